"""
Shard placement planning.

Pure functions that turn a ClusterTopologySnapshot and a goal into an
ordered TransferPlan. Planners never call the cluster: the same snapshot
always yields the same plan, so a dry run shows exactly what a real run
would do.

Safety rules shared by all planners:
- A mutation never leaves a shard without an Active replica, unless the
  caller forces it (clear only).
- Precondition failures raise a PlanningError subclass; no partial plan
  is returned in that case.
- Shards that already meet the goal go to plan.already_satisfied and get
  no operation.

Ordering: collections in scope order, shards by ascending id. Target peers
are picked by lowest resulting replica count, then ascending peer id.
"""

import logging
from collections.abc import Iterable

from operator_qdrant.exceptions import (
    InsufficientReplicasError,
    ShardNotOnSourceError,
    TargetNotEmptyError,
    TooFewShardsToEqualizeError,
)
from operator_qdrant.topology import ClusterTopologySnapshot
from operator_qdrant.types import (
    PeerId,
    RejectedShard,
    ShardId,
    ShardKey,
    ShardState,
    ShardTransferMethod,
    ShardTransferMode,
    ShardTransferOperation,
    TransferPlan,
)

logger = logging.getLogger(__name__)

# Replica states that count towards the replication factor
COUNTED_STATES = frozenset({ShardState.ACTIVE, ShardState.PARTIAL})

# Replicas still being built; they will count once they finish
PENDING_STATES = frozenset(
    {ShardState.INITIALIZING, ShardState.RECOVERY, ShardState.PARTIAL_SNAPSHOT}
)


def _scope(snapshot: ClusterTopologySnapshot, collections: Iterable[str] | None) -> list[str]:
    if collections is None:
        return snapshot.collection_names
    return [name for name in dict.fromkeys(collections) if name in snapshot.collections]


def _least_loaded(candidates: list[PeerId], loads: dict[PeerId, int]) -> PeerId:
    return min(candidates, key=lambda peer_id: (loads.get(peer_id, 0), peer_id))


def plan_drain(
    snapshot: ClusterTopologySnapshot,
    peer_id: PeerId,
    collections: Iterable[str] | None = None,
    method: ShardTransferMethod = ShardTransferMethod.SNAPSHOT,
) -> TransferPlan:
    """
    Plan relocating every replica off a peer.

    Each Active replica on the peer is moved to the least-loaded peer that
    does not hold the shard yet. When every other peer already holds the
    shard, the local replica is dropped instead, provided another Active
    replica remains.

    Args:
        snapshot: Current topology.
        peer_id: Peer to drain.
        collections: Collections in scope. None means all in the snapshot.
        method: Transfer method for the moves.

    Returns:
        The plan. Non-active replicas on the peer are listed in plan.rejected.

    Raises:
        InsufficientReplicasError: If the peer is the only peer in the cluster.
    """
    plan = TransferPlan()
    loads = snapshot.peer_loads()
    others = [p for p in snapshot.peer_ids if p != peer_id]
    stranded: list[tuple[str, ShardId, int]] = []

    for name in _scope(snapshot, collections):
        for replica in snapshot.replicas_on_peer(peer_id, name):
            shard_id = replica.shard_id
            if replica.state is not ShardState.ACTIVE:
                plan.rejected.append(
                    RejectedShard(
                        name,
                        shard_id,
                        f"replica on peer {peer_id} is {replica.state.value}, "
                        f"only Active replicas can be transferred",
                    )
                )
                continue

            active = snapshot.active_replica_count(name, shard_id)
            if not others:
                stranded.append((name, shard_id, active))
                continue

            holders = {r.peer_id for r in snapshot.replicas_of(name, shard_id)}
            candidates = [p for p in others if p not in holders]
            if candidates:
                target = _least_loaded(candidates, loads)
                loads[target] = loads.get(target, 0) + 1
                loads[peer_id] -= 1
                plan.operations.append(
                    ShardTransferOperation(
                        collection_name=name,
                        shard_id=shard_id,
                        source_peer_id=peer_id,
                        target_peer_id=target,
                        mode=ShardTransferMode.MOVE,
                        method=method,
                    )
                )
            elif active >= 2:
                loads[peer_id] -= 1
                plan.operations.append(
                    ShardTransferOperation(
                        collection_name=name,
                        shard_id=shard_id,
                        source_peer_id=peer_id,
                        target_peer_id=None,
                        mode=ShardTransferMode.DROP,
                    )
                )
            else:
                plan.rejected.append(
                    RejectedShard(
                        name,
                        shard_id,
                        "every other peer already holds a replica but none is Active",
                    )
                )

    if stranded:
        raise InsufficientReplicasError(peer_id, stranded)

    logger.debug("Drain plan for peer %d: %d operations", peer_id, len(plan.operations))
    return plan


def plan_clear(
    snapshot: ClusterTopologySnapshot,
    peer_id: PeerId,
    collections: Iterable[str] | None = None,
    force: bool = False,
    shard_ids: Iterable[ShardId] | None = None,
) -> TransferPlan:
    """
    Plan dropping every replica on a peer in place.

    Every shard with a replica on the peer must have at least two Active
    replicas, otherwise nothing is planned.

    Args:
        snapshot: Current topology.
        peer_id: Peer to clear.
        collections: Collections in scope. None means all in the snapshot.
        force: Skip the replica count check.
        shard_ids: Only drop replicas of these shards. None means all.

    Returns:
        The plan. Requested shards with no replica on the peer are listed
        in plan.already_satisfied; ids the collection does not have are
        listed in plan.rejected.

    Raises:
        InsufficientReplicasError: Naming every shard that fails the check.
    """
    plan = TransferPlan()
    offending: list[tuple[str, ShardId, int]] = []
    wanted = set(shard_ids) if shard_ids is not None else None

    for name in _scope(snapshot, collections):
        on_peer = snapshot.replicas_on_peer(peer_id, name)
        if wanted is not None:
            known = set(snapshot.shard_ids(name))
            present = {r.shard_id for r in on_peer}
            for shard_id in sorted(wanted - present):
                if shard_id in known:
                    plan.already_satisfied.append(ShardKey(name, shard_id))
                else:
                    plan.rejected.append(
                        RejectedShard(name, shard_id, "shard does not exist in collection")
                    )

        for replica in on_peer:
            if wanted is not None and replica.shard_id not in wanted:
                continue
            active = snapshot.active_replica_count(name, replica.shard_id)
            if active < 2 and not force:
                offending.append((name, replica.shard_id, active))
                continue
            plan.operations.append(
                ShardTransferOperation(
                    collection_name=name,
                    shard_id=replica.shard_id,
                    source_peer_id=peer_id,
                    target_peer_id=None,
                    mode=ShardTransferMode.DROP,
                )
            )

    if offending:
        raise InsufficientReplicasError(peer_id, offending)
    return plan


def plan_equalize(
    snapshot: ClusterTopologySnapshot,
    source_peer_id: PeerId,
    target_peer_id: PeerId,
    collections: Iterable[str] | None = None,
    method: ShardTransferMethod = ShardTransferMethod.SNAPSHOT,
) -> TransferPlan:
    """
    Plan copying half of a peer's shards to an empty peer.

    For each collection with at least two Active shards on the source,
    floor(count / 2) shards (lowest ids first) are copied to the target.

    Raises:
        ValueError: If source and target are the same peer.
        TargetNotEmptyError: If the target hosts any replica in scope.
        TooFewShardsToEqualizeError: If no collection has two or more
            Active shards on the source.
    """
    if source_peer_id == target_peer_id:
        raise ValueError(f"Equalization source and target are both peer {source_peer_id}")

    scope = _scope(snapshot, collections)
    for name in scope:
        on_target = snapshot.replicas_on_peer(target_peer_id, name)
        if on_target:
            raise TargetNotEmptyError(name, target_peer_id, len(on_target))

    source_shards = {
        name: [
            r.shard_id
            for r in snapshot.replicas_on_peer(source_peer_id, name)
            if r.state is ShardState.ACTIVE
        ]
        for name in scope
    }
    if not any(len(shard_ids) >= 2 for shard_ids in source_shards.values()):
        raise TooFewShardsToEqualizeError(
            source_peer_id, {name: len(ids) for name, ids in source_shards.items()}
        )

    plan = TransferPlan()
    for name, shard_ids in source_shards.items():
        for shard_id in sorted(shard_ids)[: len(shard_ids) // 2]:
            plan.operations.append(
                ShardTransferOperation(
                    collection_name=name,
                    shard_id=shard_id,
                    source_peer_id=source_peer_id,
                    target_peer_id=target_peer_id,
                    mode=ShardTransferMode.COPY,
                    method=method,
                )
            )
    return plan


def target_replication_factor(snapshot: ClusterTopologySnapshot, collection_name: str) -> int:
    """
    Replication factor to restore for a collection.

    The configured factor, or when the server reports none, the largest
    Active+Partial replica count of any shard.
    """
    descriptor = snapshot.collections[collection_name]
    if descriptor.replication_factor is not None:
        return descriptor.replication_factor
    counts = [
        sum(1 for r in snapshot.replicas_of(collection_name, shard_id) if r.state in COUNTED_STATES)
        for shard_id in snapshot.shard_ids(collection_name)
    ]
    return max(counts, default=0)


def plan_restore_replication_factor(
    snapshot: ClusterTopologySnapshot,
    collections: Iterable[str] | None = None,
    method: ShardTransferMethod = ShardTransferMethod.SNAPSHOT,
) -> TransferPlan:
    """
    Plan copies that bring every shard up to the replication factor.

    Replicas still being built (Initializing, Recovery, PartialSnapshot)
    and targets of transfers in progress count towards the factor, so a
    restore started while another is running never overshoots. Shards at
    or above the factor are already satisfied and are never shrunk. For the rest, target peers are picked among peers without any
    replica of the shard (least loaded first), and source peers rotate over
    the shard's Active holders.

    Shards with no Active holder, or without enough candidate peers, are
    rejected; the latter are planned as far as candidates allow.
    """
    plan = TransferPlan()
    loads = snapshot.peer_loads()

    for name in _scope(snapshot, collections):
        factor = target_replication_factor(snapshot, name)
        for shard_id in snapshot.shard_ids(name):
            replicas = snapshot.replicas_of(name, shard_id)
            counted = {
                r.peer_id
                for r in replicas
                if r.state in COUNTED_STATES or r.state in PENDING_STATES
            }
            incoming = {t.to_peer_id for t in snapshot.transfers_of(name, shard_id)}
            current = len(counted | incoming)
            if current >= factor:
                plan.already_satisfied.append(ShardKey(name, shard_id))
                continue

            sources = snapshot.active_holders(name, shard_id)
            if not sources:
                plan.rejected.append(
                    RejectedShard(name, shard_id, "no Active replica to copy from")
                )
                continue

            holders = {r.peer_id for r in replicas} | incoming
            candidates = [p for p in snapshot.peer_ids if p not in holders]
            missing = factor - current
            if missing > len(candidates):
                plan.rejected.append(
                    RejectedShard(
                        name,
                        shard_id,
                        f"needs {missing} more replicas but only "
                        f"{len(candidates)} peers can take one",
                    )
                )

            for index in range(min(missing, len(candidates))):
                target = _least_loaded(candidates, loads)
                candidates.remove(target)
                loads[target] = loads.get(target, 0) + 1
                plan.operations.append(
                    ShardTransferOperation(
                        collection_name=name,
                        shard_id=shard_id,
                        source_peer_id=sources[index % len(sources)],
                        target_peer_id=target,
                        mode=ShardTransferMode.COPY,
                        method=method,
                    )
                )

    logger.debug(
        "Restore plan: %d operations, %d satisfied, %d rejected",
        len(plan.operations),
        len(plan.already_satisfied),
        len(plan.rejected),
    )
    return plan


def plan_replicate_shards(
    snapshot: ClusterTopologySnapshot,
    target_peer_id: PeerId,
    collections: Iterable[str] | None = None,
    source_peer_id: PeerId | None = None,
    shard_ids: Iterable[ShardId] | None = None,
    is_move: bool = False,
    method: ShardTransferMethod = ShardTransferMethod.SNAPSHOT,
) -> TransferPlan:
    """
    Plan copying (or moving) shards to a target peer.

    Shard scope per collection: shard_ids if given, else the source peer's
    Active shards if a source is given, else every shard.

    Args:
        snapshot: Current topology.
        target_peer_id: Peer to place replicas on.
        collections: Collections in scope. None means all in the snapshot.
        source_peer_id: Peer to copy from. None picks the first peer (in
            cluster order) holding an Active replica of each shard.
        shard_ids: Explicit shard ids.
        is_move: Plan moves instead of copies.
        method: Transfer method.

    Returns:
        The plan. Shards already on the target (in any state but Dead) are
        listed in plan.already_satisfied.

    Raises:
        ValueError: If source and target are the same peer.
        ShardNotOnSourceError: If a scoped shard has no Active replica on
            the explicit source.
    """
    if source_peer_id is not None and source_peer_id == target_peer_id:
        raise ValueError(f"Shard source and target are both peer {target_peer_id}")

    mode = ShardTransferMode.MOVE if is_move else ShardTransferMode.COPY
    requested = sorted(set(shard_ids)) if shard_ids is not None else None
    plan = TransferPlan()

    for name in _scope(snapshot, collections):
        if requested is not None:
            scope = requested
        elif source_peer_id is not None:
            scope = [
                r.shard_id
                for r in snapshot.replicas_on_peer(source_peer_id, name)
                if r.state is ShardState.ACTIVE
            ]
        else:
            scope = snapshot.shard_ids(name)

        known = set(snapshot.shard_ids(name))
        for shard_id in scope:
            if shard_id not in known:
                plan.rejected.append(
                    RejectedShard(name, shard_id, "shard does not exist in collection")
                )
                continue

            on_target = snapshot.replica_on_peer(name, shard_id, target_peer_id)
            if on_target is not None and on_target.state is not ShardState.DEAD:
                plan.already_satisfied.append(ShardKey(name, shard_id))
                continue

            active_holders = snapshot.active_holders(name, shard_id)
            if source_peer_id is not None:
                if source_peer_id not in active_holders:
                    raise ShardNotOnSourceError(name, shard_id, source_peer_id)
                source = source_peer_id
            else:
                candidates = [p for p in active_holders if p != target_peer_id]
                if not candidates:
                    plan.rejected.append(
                        RejectedShard(name, shard_id, "no Active replica to copy from")
                    )
                    continue
                source = candidates[0]

            plan.operations.append(
                ShardTransferOperation(
                    collection_name=name,
                    shard_id=shard_id,
                    source_peer_id=source,
                    target_peer_id=target_peer_id,
                    mode=mode,
                    method=method,
                )
            )

    return plan
