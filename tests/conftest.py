"""Shared fixtures for the analytics tests."""

import pytest

from prep_analytics.models import Entity, GapEdge, GapGraph, GapNode, WeakTopic


def make_entity(entity_id, topics, intensity=0.5, completed_units=0, elapsed_minutes=0.0, name=None):
    return Entity(
        id=str(entity_id),
        name=name or f"Student {entity_id}",
        weak_topics=tuple(WeakTopic(t, intensity) for t in topics),
        completed_units=completed_units,
        elapsed_minutes=elapsed_minutes,
    )


@pytest.fixture
def scenario_entities():
    """Two learners sharing three gaps, one with an unrelated gap."""
    return [
        make_entity(1, ["Gap1", "Gap2", "Gap3"]),
        make_entity(2, ["Gap1", "Gap2", "Gap3", "Gap4"]),
        make_entity(3, ["Gap5"]),
    ]


@pytest.fixture
def cohort_records():
    """Raw records in the cohort export shape."""
    return [
        {
            "student_id": "s1",
            "name": "Arjun",
            "pyqs_attempted": 1800,
            "total_minutes_spent": 600,
            "topic_gap_sentences": [
                {"topic": "Action Potential", "gap_intensity": 0.9},
                {"topic": "Cardiac Cycle", "gap_intensity": 0.6},
                {"topic": "Enzyme Kinetics", "gap_intensity": 0.3},
            ],
        },
        {
            "student_id": "s2",
            "name": "Meera",
            "pyqs_attempted": 2100,
            "total_minutes_spent": 1200,
            "topic_gap_sentences": [
                {"topic": "Action Potential", "gap_intensity": 0.7},
                {"topic": "Cardiac Cycle", "gap_intensity": 0.5},
                {"topic": "Enzyme Kinetics", "gap_intensity": 0.1},
                {"topic": "Renal Clearance", "gap_intensity": 0.85},
            ],
        },
        {
            "student_id": "s3",
            "name": "Kabir",
            "pyqs_attempted": 0,
            "total_minutes_spent": 300,
            "topic_gap_sentences": [
                {"topic": "Starling Forces", "gap_intensity": 0.2},
            ],
        },
    ]


@pytest.fixture
def small_graph():
    nodes = [
        GapNode("Action Potential", 7.5, True),
        GapNode("Long Tracts", 11.0, True),
        GapNode("Oxygen Dissociation Curve", 4.0, False),
        GapNode("Enzyme Kinetics", 8.2, True),
        GapNode("Cardiac Cycle", 6.1, False),
    ]
    edges = [
        GapEdge("Action Potential", "Long Tracts", 60),
        GapEdge("Long Tracts", "Oxygen Dissociation Curve", 40),
        GapEdge("Action Potential", "Enzyme Kinetics", 35),
        GapEdge("Enzyme Kinetics", "Cardiac Cycle", 55),
    ]
    return GapGraph(nodes=nodes, edges=edges)
