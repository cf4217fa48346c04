import os
import getpass
import logging

logger = logging.getLogger(__name__)

TRUE_STRINGS = ('1', 'true', 'yes', 'on')
PASSWORD_SETTINGS = ('ARRAY_PASSWORD', 'VCENTER_PASSWORD')


def env_flag(value):
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in TRUE_STRINGS


class Config(object):
    ARRAY_HOST = os.environ.get("ARRAY_HOST", None)
    ARRAY_PORT = os.environ.get("ARRAY_PORT", "5392")
    ARRAY_USERNAME = os.environ.get("ARRAY_USERNAME", None)
    ARRAY_PASSWORD = os.environ.get("ARRAY_PASSWORD", None)
    ARRAY_VERIFY_SSL = env_flag(os.environ.get("ARRAY_VERIFY_SSL", False))

    VCENTER_HOST = os.environ.get("VCENTER_HOST", None)
    VCENTER_PORT = os.environ.get("VCENTER_PORT", "443")
    VCENTER_USERNAME = os.environ.get("VCENTER_USERNAME", None)
    VCENTER_PASSWORD = os.environ.get("VCENTER_PASSWORD", None)
    VCENTER_VERIFY_SSL = env_flag(os.environ.get("VCENTER_VERIFY_SSL", False))

    SNAPSHOT_NAME_PATTERN = os.environ.get("SNAPSHOT_NAME_PATTERN", None)
    REPLICA_SNAPSHOT_NAME_PATTERN = os.environ.get("REPLICA_SNAPSHOT_NAME_PATTERN", None)

    LOGS_DIR = os.environ.get("LOGS_DIR", ".")


ARRAY_SETTINGS = ['ARRAY_HOST', 'ARRAY_USERNAME']
VCENTER_SETTINGS = ['VCENTER_HOST', 'VCENTER_USERNAME']
WRITABLE_SETTINGS = [
    'ARRAY_HOST', 'ARRAY_PORT', 'ARRAY_USERNAME', 'ARRAY_PASSWORD', 'ARRAY_VERIFY_SSL',
    'VCENTER_HOST', 'VCENTER_PORT', 'VCENTER_USERNAME', 'VCENTER_PASSWORD', 'VCENTER_VERIFY_SSL',
    'SNAPSHOT_NAME_PATTERN', 'REPLICA_SNAPSHOT_NAME_PATTERN', 'LOGS_DIR',
]


def missing_settings(names):
    return [name for name in names if not getattr(Config, name, None)]


def _prompt(name):
    value = input("{} [{}]:".format(name, getattr(Config, name) or ''))
    if value:
        setattr(Config, name, value)


def load_config():
    logger.info("Loading config interactively")
    if Config.ARRAY_HOST is None:
        Config.ARRAY_HOST = input("ARRAY_HOST:")
    _prompt('ARRAY_USERNAME')
    array_password = getpass.getpass("ARRAY_PASSWORD []:")
    if array_password:
        Config.ARRAY_PASSWORD = array_password
    if Config.VCENTER_HOST is None:
        Config.VCENTER_HOST = input("VCENTER_HOST:")
    _prompt('VCENTER_USERNAME')
    vcenter_password = getpass.getpass("VCENTER_PASSWORD []:")
    if vcenter_password:
        Config.VCENTER_PASSWORD = vcenter_password
    _prompt('SNAPSHOT_NAME_PATTERN')
    _prompt('REPLICA_SNAPSHOT_NAME_PATTERN')


def write_config(path, write_passwords=False):
    lines = list()
    for name in WRITABLE_SETTINGS:
        if name in PASSWORD_SETTINGS and not write_passwords:
            continue
        value = getattr(Config, name, None)
        if value is None or value is False or value == '':
            continue
        if value is True:
            value = 'true'
        lines.append('export {}="{}"\n'.format(name, value))
    with open(path, 'w') as f:
        f.writelines(lines)
    logger.info("Wrote %s settings to %s", len(lines), path)
    return True
