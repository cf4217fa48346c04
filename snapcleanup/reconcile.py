"""Per-VM reconciliation of array snapshots.

An array snapshot is only removed when none of the VMs whose files live on its
volume holds a vSphere snapshot: a live vSphere snapshot may still be what the
array snapshot was taken for.
"""
import time
import fnmatch
import logging
from collections import defaultdict, OrderedDict
from datetime import datetime, timedelta

import dateutil.parser
import dateutil.tz
from munch import Munch

from snapcleanup import array
from snapcleanup import vcenter
from snapcleanup.logs import audit, RESULT_DONE, RESULT_DRY_RUN, RESULT_FAILED, RESULT_SKIPPED
from snapcleanup.status import (ALL_DATASTORES, ARRAY_DATASTORES, ALL_VMS, ACTIVE_SNAPSHOT_VMS, ALL_VOLUMES,
                                VM_VOLUMES, PROTECTED_VOLUMES, MATCHING_SNAPSHOTS, YOUNG_SNAPSHOTS,
                                PROTECTED_SNAPSHOTS, STALE_SNAPSHOTS, VM_PLANS, VM_STATUS_KEYS)

logger = logging.getLogger(__name__)

UTC = dateutil.tz.tzutc()


def are_you_sure(args):
    if not args.answer_yes:
        sure = input("Are you sure [Y/n]:")
        if sure in ["Y", 'y']:
            return True
        return False
    return True


def snapshot_name_matches(name, pattern):
    if not pattern or not name:
        return False
    return fnmatch.fnmatchcase(name.lower(), pattern.lower())


def snapshot_time(snapshot):
    value = snapshot.get('creation_time')
    if value is None or value == '':
        return None
    if isinstance(value, str) and value.isdigit():
        value = int(value)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, UTC)
    parsed = dateutil.parser.parse(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def is_old_enough(snapshot, min_age, now):
    if not min_age:
        return True
    created = snapshot_time(snapshot)
    if created is None:
        return False
    return now - created >= min_age


def _add_volume(volumes, volume):
    if all(v.id != volume.id for v in volumes):
        volumes.append(volume)


def resolve_vm_volumes(vm, array_datastores, serial_map):
    volumes = []
    datastore_names, device_ids = vcenter.vm_backing(vm)
    for name in datastore_names:
        for volume in array_datastores.get(name, []):
            _add_volume(volumes, volume)
    for device_id in device_ids:
        volume = vcenter.volume_for_device(device_id, serial_map)
        if volume is not None:
            _add_volume(volumes, volume)
    return volumes


def _volume_snapshots(requester, volume, snapshot_cache):
    if volume.id not in snapshot_cache:
        snapshots = array.list_volume_snapshots(requester, volume.id)
        for snapshot in snapshots:
            snapshot.setdefault('vol_id', volume.id)
            snapshot.setdefault('vol_name', volume.name)
        snapshot_cache[volume.id] = snapshots
    return snapshot_cache[volume.id]


def plan_vm(args, requester, vm, array_datastores, serial_map, now, snapshot_cache=None):
    if snapshot_cache is None:
        snapshot_cache = dict()
    min_age = timedelta(hours=args.min_age_hours)
    plan = Munch(name=vm.name, moid=vm._moId, vm=vm, volumes=[], live_snapshots=[], matching=[], stale=[])
    plan.volumes = resolve_vm_volumes(vm, array_datastores, serial_map)
    plan.live_snapshots = vcenter.live_snapshot_names(vm)
    for volume in plan.volumes:
        for snapshot in _volume_snapshots(requester, volume, snapshot_cache):
            if not snapshot_name_matches(snapshot.name, args.pattern):
                continue
            plan.matching.append(snapshot)
            if is_old_enough(snapshot, min_age, now):
                plan.stale.append(snapshot)
    logger.debug("VM %s: %s volumes, %s matching snapshots, %s stale, %s live vSphere snapshots",
                 plan.name, len(plan.volumes), len(plan.matching), len(plan.stale), len(plan.live_snapshots))
    return plan


def _protect_live_vm_volumes(results, vm, array_datastores, serial_map):
    live_snapshots = vcenter.live_snapshot_names(vm)
    if not live_snapshots:
        return
    results[ACTIVE_SNAPSHOT_VMS][vm._moId] = live_snapshots
    for volume in resolve_vm_volumes(vm, array_datastores, serial_map):
        logger.debug("Volume %s is protected by live vSphere snapshots of VM %s", volume.name, vm.name)
        results[PROTECTED_VOLUMES][volume.id] = volume


def snapshots_status(args, requester, content, now=None):
    if now is None:
        now = datetime.now(UTC)
    results = defaultdict(OrderedDict)
    for key in VM_STATUS_KEYS:
        results[key] = OrderedDict()

    volumes = array.list_volumes(requester)
    results[ALL_VOLUMES] = OrderedDict((volume.id, volume) for volume in volumes)
    serial_map = array.volumes_by_serial(volumes)

    datastores = vcenter.get_all_datastores(content)
    results[ALL_DATASTORES] = OrderedDict((ds.name, ds.name) for ds in datastores)
    array_datastores = vcenter.find_array_datastores(datastores, serial_map)
    for name, ds_volumes in array_datastores.items():
        results[ARRAY_DATASTORES][name] = [volume.name for volume in ds_volumes]

    vms = vcenter.find_vms_on_datastores([ds for ds in datastores if ds.name in array_datastores])
    selected_vm_names = set(args.vms or [])
    snapshot_cache = dict()
    for vm in vms:
        if selected_vm_names and vm.name not in selected_vm_names:
            continue
        plan = plan_vm(args, requester, vm, array_datastores, serial_map, now, snapshot_cache)
        results[VM_PLANS][plan.moid] = plan
        results[ALL_VMS][plan.moid] = plan.name
        for volume in plan.volumes:
            results[VM_VOLUMES][volume.id] = volume
            if plan.live_snapshots:
                results[PROTECTED_VOLUMES][volume.id] = volume
        if plan.live_snapshots:
            results[ACTIVE_SNAPSHOT_VMS][plan.moid] = plan.live_snapshots
        stale_ids = set(snapshot.id for snapshot in plan.stale)
        for snapshot in plan.matching:
            results[MATCHING_SNAPSHOTS][snapshot.id] = snapshot
            if snapshot.id not in stale_ids:
                results[YOUNG_SNAPSHOTS][snapshot.id] = snapshot

    # unselected VMs and VMs reaching array volumes only through RDMs still protect them
    for vm in vcenter.get_all_vms(content):
        if vm._moId in results[VM_PLANS]:
            continue
        _protect_live_vm_volumes(results, vm, array_datastores, serial_map)

    for plan in results[VM_PLANS].values():
        for snapshot in plan.stale:
            if plan.live_snapshots or snapshot.vol_id in results[PROTECTED_VOLUMES]:
                results[PROTECTED_SNAPSHOTS][snapshot.id] = snapshot
    for plan in results[VM_PLANS].values():
        for snapshot in plan.stale:
            if snapshot.id not in results[PROTECTED_SNAPSHOTS]:
                results[STALE_SNAPSHOTS][snapshot.id] = snapshot
    return results


def remove_array_snapshot(args, requester, snapshot, vm_name=None, procedure='vm'):
    details = dict(procedure=procedure, volume=snapshot.get('vol_name') or snapshot.get('vol_id'))
    if vm_name:
        details['vm'] = vm_name
    if args.dry_run:
        logger.info("Skipping")
        audit('delete', 'snapshot', snapshot.id, snapshot.name, RESULT_DRY_RUN, **details)
        return False

    if snapshot.get('online', True):
        try:
            array.offline_snapshot(requester, snapshot)
        except Exception as ex:
            logger.error("Failed to offline snapshot %s (%s): %s", snapshot.name, snapshot.id, ex)
            audit('offline', 'snapshot', snapshot.id, snapshot.name, RESULT_FAILED, error=str(ex), **details)
            if args.break_on_error:
                raise
            return False
        audit('offline', 'snapshot', snapshot.id, snapshot.name, RESULT_DONE, **details)

    try:
        array.delete_snapshot(requester, snapshot)
    except Exception as ex:
        logger.error("Failed to delete snapshot %s (%s): %s", snapshot.name, snapshot.id, ex)
        audit('delete', 'snapshot', snapshot.id, snapshot.name, RESULT_FAILED, error=str(ex), **details)
        if args.break_on_error:
            raise
        return False
    audit('delete', 'snapshot', snapshot.id, snapshot.name, RESULT_DONE, **details)
    logger.info("Deleted snapshot %s (%s)", snapshot.name, snapshot.id)
    time.sleep(args.sleep)
    return True


def _current_live_snapshots(plan):
    if not plan.live_snapshots:
        plan.live_snapshots = vcenter.live_snapshot_names(plan.vm)
    return plan.live_snapshots


def _shared_volume_is_live(status_dict, plan, snapshot):
    protected_volumes = status_dict[PROTECTED_VOLUMES]
    if snapshot.vol_id in protected_volumes:
        return True
    for other in status_dict[VM_PLANS].values():
        if other is plan or all(volume.id != snapshot.vol_id for volume in other.volumes):
            continue
        if _current_live_snapshots(other):
            protected_volumes[snapshot.vol_id] = status_dict[ALL_VOLUMES].get(snapshot.vol_id)
            return True
    return False


def _skip_live_vm(plan, handled):
    logger.warning("VM %s has live vSphere snapshots (%s) - skipping its array snapshots",
                   plan.name, ', '.join(plan.live_snapshots))
    for snapshot in plan.stale:
        if snapshot.id in handled:
            continue
        handled.add(snapshot.id)
        audit('delete', 'snapshot', snapshot.id, snapshot.name, RESULT_SKIPPED,
              vm=plan.name, reason='live-vm-snapshot')


def clean_vm_snapshots(args, client, label, status_dict):
    logger.info(label)
    if not are_you_sure(args):
        logger.info("User requested to skip")
        return 0
    handled = set()
    deleted = 0
    for plan in status_dict[VM_PLANS].values():
        for snapshot in plan.stale:
            if snapshot.id in handled:
                logger.debug("Snapshot %s already handled", snapshot.id)
                continue
            # vSphere snapshots may have been taken since the status was built
            if _current_live_snapshots(plan):
                _skip_live_vm(plan, handled)
                break
            handled.add(snapshot.id)
            if _shared_volume_is_live(status_dict, plan, snapshot):
                logger.info("Snapshot %s of volume %s also backs a VM with a live vSphere snapshot - skipping",
                            snapshot.name, snapshot.vol_name)
                audit('delete', 'snapshot', snapshot.id, snapshot.name, RESULT_SKIPPED,
                      vm=plan.name, reason='protected-volume')
                continue
            logger.info("Going to delete array snapshot %s (%s) of volume %s used by VM %s",
                        snapshot.name, snapshot.id, snapshot.vol_name, plan.name)
            if remove_array_snapshot(args, client, snapshot, vm_name=plan.name):
                deleted += 1
    logger.info("Deleted %s array snapshots", deleted)
    return deleted
