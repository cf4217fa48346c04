from collections import OrderedDict

ALL_DATASTORES = 'all_datastores'
ARRAY_DATASTORES = 'array_datastores'
ALL_VMS = 'all_vms'
ACTIVE_SNAPSHOT_VMS = 'active_snapshot_vms'
ALL_VOLUMES = 'all_volumes'
VM_VOLUMES = 'vm_volumes'
PROTECTED_VOLUMES = 'protected_volumes'
MATCHING_SNAPSHOTS = 'matching_snapshots'
YOUNG_SNAPSHOTS = 'young_snapshots'
PROTECTED_SNAPSHOTS = 'protected_snapshots'
STALE_SNAPSHOTS = 'stale_snapshots'
REPLICA_VOLUMES = 'replica_volumes'
REPLICA_SNAPSHOTS = 'replica_snapshots'
VM_PLANS = 'vm_plans'

LABEL_DICT = OrderedDict()
LABEL_DICT[ALL_DATASTORES] = "Datastores"
LABEL_DICT[ARRAY_DATASTORES] = "Datastores backed by the array"
LABEL_DICT[ALL_VMS] = "VMs on array datastores"
LABEL_DICT[ACTIVE_SNAPSHOT_VMS] = "VMs with live vSphere snapshots"
LABEL_DICT[ALL_VOLUMES] = "Array volumes"
LABEL_DICT[VM_VOLUMES] = "Array volumes backing VMs"
LABEL_DICT[PROTECTED_VOLUMES] = "Array volumes backing VMs with live vSphere snapshots"
LABEL_DICT[MATCHING_SNAPSHOTS] = "Array snapshots matching the name pattern"
LABEL_DICT[YOUNG_SNAPSHOTS] = "Matching array snapshots newer than the minimum age"
LABEL_DICT[PROTECTED_SNAPSHOTS] = "Array snapshots that will not be deleted because of a live vSphere snapshot"
LABEL_DICT[STALE_SNAPSHOTS] = "Stale array snapshots to delete"
LABEL_DICT[REPLICA_VOLUMES] = "Offline replica volumes"
LABEL_DICT[REPLICA_SNAPSHOTS] = "Replica snapshots to delete"

VM_STATUS_KEYS = [ALL_DATASTORES, ARRAY_DATASTORES, ALL_VMS, ACTIVE_SNAPSHOT_VMS, ALL_VOLUMES, VM_VOLUMES,
                  PROTECTED_VOLUMES, MATCHING_SNAPSHOTS, YOUNG_SNAPSHOTS, PROTECTED_SNAPSHOTS, STALE_SNAPSHOTS,
                  VM_PLANS]
REPLICA_STATUS_KEYS = [ALL_VOLUMES, REPLICA_VOLUMES, REPLICA_SNAPSHOTS]
