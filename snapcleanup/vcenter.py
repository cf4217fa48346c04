import re
import ssl
import atexit
import logging
from collections import OrderedDict

from pyVim import connect
from pyVmomi import vim

logger = logging.getLogger(__name__)

DEVICE_PATH_PREFIX = '/vmfs/devices/disks/'
DEVICE_ID_PREFIXES = ('naa.', 'eui.', 't10.', 'vml.')
DATASTORE_PATH_RE = re.compile(r'^\[(?P<datastore>[^\]]+)\]')


def connect_vcenter(host, user, password, port=443, verify=False):
    logger.info("Going to login to vCenter %s as %s", host, user)
    kwargs = dict(host=host, user=user, pwd=password, port=int(port))
    if not verify:
        ssl_context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
        ssl_context.check_hostname = False
        ssl_context.verify_mode = ssl.CERT_NONE
        kwargs['sslContext'] = ssl_context
    si = connect.SmartConnect(**kwargs)
    atexit.register(connect.Disconnect, si)
    logger.info("Connected to vCenter %s", host)
    return si


def _container_view(content, obj_type):
    view = content.viewManager.CreateContainerView(content.rootFolder, [obj_type], True)
    try:
        return list(view.view)
    finally:
        view.Destroy()


def get_all_datastores(content):
    return _container_view(content, vim.Datastore)


def get_all_vms(content):
    return _container_view(content, vim.VirtualMachine)


def canonical_device_id(name):
    """Reduce an ESXi device name to the bare identifier the array reports.

    Accepts canonical names ("naa.6000...", "eui.2c1a..."), device paths
    ("/vmfs/devices/disks/naa.6000...") and partition suffixes (":1").
    """
    if not name:
        return None
    device_id = name.strip()
    if device_id.startswith(DEVICE_PATH_PREFIX):
        device_id = device_id[len(DEVICE_PATH_PREFIX):]
    device_id = device_id.split(':', 1)[0].lower()
    for prefix in DEVICE_ID_PREFIXES:
        if device_id.startswith(prefix):
            return device_id[len(prefix):]
    return device_id


def device_matches_serial(device_id, serial):
    if not device_id or not serial:
        return False
    serial = serial.lower()
    # vml names embed the NAA id between a LUN prefix and a model hash
    return device_id == serial or serial in device_id


def datastore_device_ids(datastore):
    info = getattr(datastore, 'info', None)
    vmfs = getattr(info, 'vmfs', None)
    if vmfs is None:
        return []
    return [canonical_device_id(extent.diskName) for extent in vmfs.extent or []]


def volume_for_device(device_id, serial_map):
    volume = serial_map.get(device_id)
    if volume is not None:
        return volume
    for serial, volume in serial_map.items():
        if device_matches_serial(device_id, serial):
            return volume
    return None


def find_array_datastores(datastores, serial_map):
    """Map each datastore name to the array volumes backing its extents.

    Datastores without an extent on the array are left out.
    """
    array_datastores = OrderedDict()
    for datastore in datastores:
        volumes = []
        for device_id in datastore_device_ids(datastore):
            volume = volume_for_device(device_id, serial_map)
            if volume is not None and volume not in volumes:
                volumes.append(volume)
        if volumes:
            logger.debug("Datastore %s is backed by %s", datastore.name, ', '.join(v.name for v in volumes))
            array_datastores[datastore.name] = volumes
    return array_datastores


def find_vms_on_datastores(datastores):
    vms = OrderedDict()
    for datastore in datastores:
        for vm in datastore.vm or []:
            vms.setdefault(vm._moId, vm)
    return list(vms.values())


def datastore_name_from_path(path):
    if not path:
        return None
    match = DATASTORE_PATH_RE.match(path.strip())
    if not match:
        return None
    return match.group('datastore')


def vm_backing(vm):
    """Return (datastore names, raw device ids) holding the VM's files and disks."""
    datastore_names = []
    device_ids = []
    config = vm.config
    if config is None:
        return datastore_names, device_ids

    name = datastore_name_from_path(config.files.vmPathName)
    if name:
        datastore_names.append(name)

    for device in config.hardware.device:
        if not isinstance(device, vim.vm.device.VirtualDisk):
            continue
        backing = device.backing
        if isinstance(backing, vim.vm.device.VirtualDisk.RawDiskMappingVer1BackingInfo):
            device_id = canonical_device_id(backing.deviceName)
            if device_id and device_id not in device_ids:
                device_ids.append(device_id)
        name = datastore_name_from_path(getattr(backing, 'fileName', None))
        if name and name not in datastore_names:
            datastore_names.append(name)
    return datastore_names, device_ids


def _snapshot_tree_names(snapshot_trees):
    names = []
    for tree in snapshot_trees or []:
        names.append(tree.name)
        names.extend(_snapshot_tree_names(tree.childSnapshotList))
    return names


def live_snapshot_names(vm):
    snapshot_info = vm.snapshot
    if snapshot_info is None:
        return []
    return _snapshot_tree_names(snapshot_info.rootSnapshotList)
