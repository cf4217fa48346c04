"""Cleanup of snapshots replicated onto offline downstream volumes.

Replica volumes are never presented to a running VM, so no vCenter check is
made before their snapshots are removed.
"""
import logging
from collections import defaultdict, OrderedDict
from datetime import datetime, timedelta

from snapcleanup import array
from snapcleanup.reconcile import UTC, are_you_sure, is_old_enough, remove_array_snapshot, snapshot_name_matches
from snapcleanup.status import ALL_VOLUMES, REPLICA_VOLUMES, REPLICA_SNAPSHOTS, REPLICA_STATUS_KEYS

logger = logging.getLogger(__name__)

REPLICA_ROLES = ('periodic_snapshot_downstream', 'synchronous_downstream')


def is_replica_volume(volume):
    if volume.get('online', True):
        return False
    return volume.get('replication_role') in REPLICA_ROLES


def replica_status(args, requester, status_dict=None, now=None):
    if status_dict is None:
        status_dict = defaultdict(OrderedDict)
    if now is None:
        now = datetime.now(UTC)
    for key in REPLICA_STATUS_KEYS:
        if key not in status_dict:
            status_dict[key] = OrderedDict()
    if not status_dict[ALL_VOLUMES]:
        status_dict[ALL_VOLUMES] = OrderedDict((volume.id, volume) for volume in array.list_volumes(requester))
    min_age = timedelta(hours=args.min_age_hours)
    for volume in status_dict[ALL_VOLUMES].values():
        if not is_replica_volume(volume):
            continue
        status_dict[REPLICA_VOLUMES][volume.id] = volume
        for snapshot in array.list_volume_snapshots(requester, volume.id):
            snapshot.setdefault('vol_id', volume.id)
            snapshot.setdefault('vol_name', volume.name)
            if snapshot_name_matches(snapshot.name, args.replica_pattern) and is_old_enough(snapshot, min_age, now):
                status_dict[REPLICA_SNAPSHOTS][snapshot.id] = snapshot
    return status_dict


def clean_replica_snapshots(args, client, label, status_dict):
    logger.info(label)
    if not are_you_sure(args):
        logger.info("User requested to skip")
        return 0
    deleted = 0
    for snapshot in status_dict[REPLICA_SNAPSHOTS].values():
        logger.info("Going to delete replica snapshot %s (%s) of volume %s",
                    snapshot.name, snapshot.id, snapshot.vol_name)
        if remove_array_snapshot(args, client, snapshot, procedure='replica'):
            deleted += 1
    logger.info("Deleted %s replica snapshots", deleted)
    return deleted
