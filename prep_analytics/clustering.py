"""
Study-group discovery: group learners that share weak topics.

The grouping is greedy and seeded. Each unprocessed learner, in input order,
seeds a group and pulls in every other unprocessed learner that shares at
least ``min_shared`` topics *with the seed*. Members are not compared with
each other, so two learners that only overlap through the seed still end up
together. Groups of one are dropped, and their seed is not revisited.
"""

import logging
from collections import Counter
from typing import List, Sequence

import numpy as np

from prep_analytics.models import Cluster, Entity

logger = logging.getLogger(__name__)

DEFAULT_MIN_SHARED = 3


def _summarize(members: List[Entity]) -> Cluster:
    counts: Counter = Counter()
    intensities = []
    for member in members:
        # one count per member, even if a topic is listed twice
        counts.update(list(dict.fromkeys(g.topic for g in member.weak_topics)))
        intensities.extend(g.intensity for g in member.weak_topics)
    # Counter preserves first-seen order
    common = [(topic, count) for topic, count in counts.items() if count >= 2]
    avg_intensity = float(np.mean(intensities)) if intensities else 0.0
    return Cluster(
        member_ids=[m.id for m in members],
        member_names=[m.name for m in members],
        common_gaps=common,
        avg_intensity=avg_intensity,
    )


def cluster_by_shared_gaps(entities: Sequence[Entity], min_shared: int = DEFAULT_MIN_SHARED) -> List[Cluster]:
    """
    Partition learners into disjoint clusters of at least two members.

    Args:
        entities: Learners, in the order that decides which one seeds a cluster.
        min_shared: Minimum number of weak topics a learner must share with
            the seed to join its cluster.

    Returns:
        Clusters in seed order. Learners not in any cluster are omitted.
    """
    processed = set()
    clusters: List[Cluster] = []

    for seed in entities:
        if seed.id in processed:
            continue
        seed_topics = seed.topic_labels
        members = [seed]

        for other in entities:
            if other.id == seed.id or other.id in processed:
                continue
            if len(seed_topics & other.topic_labels) >= min_shared:
                members.append(other)
                processed.add(other.id)

        processed.add(seed.id)
        if len(members) > 1:
            clusters.append(_summarize(members))

    logger.debug(
        f"Clustered {len(entities)} learners into {len(clusters)} groups "
        f"(min_shared={min_shared})"
    )
    return clusters


def unclustered_ids(entities: Sequence[Entity], clusters: Sequence[Cluster]) -> List[str]:
    clustered = {member for c in clusters for member in c.member_ids}
    return [e.id for e in entities if e.id not in clustered]
