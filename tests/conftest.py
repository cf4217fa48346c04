"""Shared fakes: an in-memory array behind the requester interface and
vSphere inventory objects built from munch plus real pyVmomi data objects."""
import json
import logging
import re

import pytest
from munch import Munch
from pyVmomi import vim

from snapcleanup import cli
from snapcleanup import logs

SERIAL_DS1 = '6c9ce900e5ae2e9f6c9ce900e5ae2e01'
SERIAL_DS2 = '6c9ce900e5ae2e9f6c9ce900e5ae2e02'
SERIAL_RDM = '6c9ce900e5ae2e9f6c9ce900e5ae2e03'
SERIAL_OTHER = '6c9ce900e5ae2e9f6c9ce900e5ae2e04'


class FakeResponse(object):
    def __init__(self, status_code=200, body=None):
        self.status_code = status_code
        self._body = body
        self.content = json.dumps(body).encode() if body is not None else b''
        self.text = self.content.decode()

    def json(self):
        if self._body is None:
            raise ValueError("No JSON object could be decoded")
        return self._body


class FakeArray(object):
    """Answers the handful of /v1 calls the cleanup makes and records the rest."""

    def __init__(self, volumes=None, snapshots=None):
        self.volumes = volumes or []
        self.snapshots = snapshots or {}
        self.calls = []
        self.fail_offline = set()
        self.fail_delete = set()

    def mutations(self):
        return [(method, url) for method, url, _ in self.calls if method not in ('GET', 'HEAD')]

    def _page(self, records, params):
        start = params.get('startRow', 0)
        end = params.get('endRow', len(records))
        return FakeResponse(200, {'startRow': start, 'endRow': min(end, len(records)),
                                  'totalRows': len(records), 'data': records[start:end]})

    def __call__(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        params = kwargs.get('params') or {}
        if method == 'GET' and url == '/v1/volumes/detail':
            return self._page(self.volumes, params)
        if method == 'GET' and url == '/v1/snapshots/detail':
            return self._page(self.snapshots.get(params.get('vol_id'), []), params)
        match = re.match(r'^/v1/snapshots/(?P<id>[^/]+)$', url)
        if match and method == 'PUT':
            if match.group('id') in self.fail_offline:
                return FakeResponse(500, {'messages': [{'code': 'SM_eperm', 'text': 'offline refused'}]})
            return FakeResponse(200, {'data': {'id': match.group('id'), 'online': False}})
        if match and method == 'DELETE':
            if match.group('id') in self.fail_delete:
                return FakeResponse(409, {'messages': [{'code': 'SM_busy', 'text': 'snapshot busy'}]})
            return FakeResponse(200)
        return FakeResponse(404, {'messages': [{'code': 'SM_http_not_found', 'text': 'not found'}]})


def volume(vol_id, name, serial, online=True, replication_role='no_replication'):
    return {'id': vol_id, 'name': name, 'serial_number': serial, 'online': online,
            'replication_role': replication_role}


def snapshot(snap_id, name, vol_id, online=True, creation_time=1700000000):
    return {'id': snap_id, 'name': name, 'vol_id': vol_id, 'online': online, 'creation_time': creation_time}


def disk(file_name):
    return vim.vm.device.VirtualDisk(
        key=2000,
        backing=vim.vm.device.VirtualDisk.FlatVer2BackingInfo(fileName=file_name))


def rdm_disk(file_name, device_name):
    return vim.vm.device.VirtualDisk(
        key=2001,
        backing=vim.vm.device.VirtualDisk.RawDiskMappingVer1BackingInfo(fileName=file_name,
                                                                         deviceName=device_name))


def snapshot_tree(name, children=None):
    return Munch(name=name, childSnapshotList=children or [])


def make_vm(name, moid, vmx_datastore, devices=None, snapshots=None):
    vm = Munch(name=name, _moId=moid)
    vm.config = Munch(files=Munch(vmPathName='[{}] {}/{}.vmx'.format(vmx_datastore, name, name)),
                      hardware=Munch(device=devices or []))
    vm.snapshot = Munch(rootSnapshotList=snapshots) if snapshots else None
    return vm


def make_datastore(name, disk_names=None, vms=None):
    datastore = Munch(name=name, vm=vms or [])
    if disk_names is None:
        datastore.info = Munch(url='ds:///vmfs/volumes/nfs/')
    else:
        datastore.info = Munch(vmfs=Munch(extent=[Munch(diskName=d, partition=1) for d in disk_names]))
    return datastore


class FakeView(object):
    def __init__(self, objects):
        self.view = objects
        self.destroyed = False

    def Destroy(self):
        self.destroyed = True


class FakeViewManager(object):
    def __init__(self, inventory):
        self.inventory = inventory

    def CreateContainerView(self, container, types, recursive):
        return FakeView(self.inventory.get(types[0], []))


def make_content(datastores, vms=None):
    inventory = {vim.Datastore: datastores, vim.VirtualMachine: vms or []}
    return Munch(rootFolder=Munch(name='Datacenters'), viewManager=FakeViewManager(inventory))


@pytest.fixture()
def make_args():
    def _make_args(*extra, **overrides):
        argv = ['purge-all', '--pattern', 'VeeamAUX*', '--replica-pattern', 'VeeamAUX*',
                '--sleep', '0', '--no-dry-run', '-y'] + list(extra)
        args = cli.parse_arguments(argv)
        for key, value in overrides.items():
            setattr(args, key, value)
        return args
    return _make_args


@pytest.fixture()
def audit_file(tmp_path):
    path = tmp_path / 'audit' / logs.AUDIT_LOG_FILE
    handler = logs.init_audit_log(str(path))

    def _records():
        handler.flush()
        if not path.exists():
            return []
        return [json.loads(line) for line in path.read_text().splitlines() if line]

    yield _records
    logs.audit_logger.removeHandler(handler)
    handler.close()


@pytest.fixture()
def inventory():
    """Two VMs sharing ds1, one of them also on ds2 and an RDM, and an NFS datastore."""
    vm_web = make_vm('web01', 'vm-101', 'ds1',
                     devices=[disk('[ds1] web01/web01.vmdk'), vim.vm.device.VirtualE1000(key=4000)])
    vm_db = make_vm('db01', 'vm-102', 'ds1',
                    devices=[disk('[ds2] db01/db01.vmdk'),
                             rdm_disk('[ds1] db01/db01_rdm.vmdk', '/vmfs/devices/disks/naa.2' + SERIAL_RDM)])
    vm_nfs = make_vm('nfs01', 'vm-103', 'nfs', devices=[disk('[nfs] nfs01/nfs01.vmdk')])
    ds1 = make_datastore('ds1', ['eui.' + SERIAL_DS1], vms=[vm_web, vm_db])
    ds2 = make_datastore('ds2', ['naa.2' + SERIAL_DS2.upper()], vms=[vm_db])
    nfs = make_datastore('nfs', None, vms=[vm_nfs])
    local = make_datastore('local', ['t10.ATA_____Samsung_SSD_860'], vms=[])
    return Munch(vms=[vm_web, vm_db, vm_nfs], datastores=[ds1, ds2, nfs, local],
                 content=make_content([ds1, ds2, nfs, local], [vm_web, vm_db, vm_nfs]))


@pytest.fixture()
def fake_array():
    volumes = [
        volume('v1', 'vmfs-ds1', SERIAL_DS1),
        volume('v2', 'vmfs-ds2', SERIAL_DS2),
        volume('v3', 'db01-rdm', SERIAL_RDM),
        volume('v4', 'unrelated', SERIAL_OTHER),
        volume('v5', 'vmfs-ds1-replica', 'ffff0000ffff0000ffff0000ffff0005', online=False,
               replication_role='periodic_snapshot_downstream'),
    ]
    snapshots = {
        'v1': [snapshot('s1', 'VeeamAUX_ds1_1', 'v1'), snapshot('s2', 'daily-ds1', 'v1')],
        'v2': [snapshot('s3', 'veeamaux_ds2_1', 'v2', online=False)],
        'v3': [snapshot('s4', 'VeeamAUX_rdm_1', 'v3')],
        'v4': [snapshot('s5', 'VeeamAUX_other', 'v4')],
        'v5': [snapshot('s6', 'VeeamAUX_ds1_0', 'v5', online=False), snapshot('s7', 'hourly', 'v5')],
    }
    return FakeArray(volumes, snapshots)


@pytest.fixture()
def restore_root_handlers():
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)
