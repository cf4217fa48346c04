"""
Delete stale storage-array snapshots of VM datastores and of offline replica volumes
"""
import os
import sys
import json
import getpass
import logging
import argparse
from collections import defaultdict, OrderedDict

from munch import unmunchify

from snapcleanup import __version__
from snapcleanup.array import get_array_requester
from snapcleanup.config import (Config, ARRAY_SETTINGS, VCENTER_SETTINGS, env_flag, load_config,
                                missing_settings, write_config)
from snapcleanup.logs import AUDIT_LOG_FILE, init_audit_log, init_logger, logs_dir_path
from snapcleanup.reconcile import are_you_sure, clean_vm_snapshots, snapshots_status
from snapcleanup.replicas import clean_replica_snapshots, replica_status
from snapcleanup.status import LABEL_DICT, REPLICA_SNAPSHOTS, STALE_SNAPSHOTS
from snapcleanup.vcenter import connect_vcenter

ENV_FILE = 'cred_env'
SLEEP_BEFORE_NEXT_OP = 2
VALID_OPS = [
    'snapshots-status',
    'purge-vm-snapshots',
    'purge-replica-snapshots',
    'purge-all',
]
VCENTER_OPS = ['snapshots-status', 'purge-vm-snapshots', 'purge-all']
REPLICA_OPS = ['snapshots-status', 'purge-replica-snapshots', 'purge-all']

logger = logging.getLogger()


def print_snapshots_status(status_dict):
    for key, label in LABEL_DICT.items():
        if key in status_dict:
            logger.info("There are %s %s", len(status_dict[key]), label)


def print_all_snapshots(status_dict):
    for key, result in status_dict.items():
        logger.info("%s (%s):\n%s", LABEL_DICT.get(key, key), len(result),
                    json.dumps(unmunchify(result), indent=2, default=str))


def parse_arguments(argv=None):
    parser = argparse.ArgumentParser(description=__doc__.strip())
    parser.add_argument(
        "op",
        choices=VALID_OPS,
        help="Operation to perform. one of: "
             "snapshots-status (report what would be deleted), "
             "purge-vm-snapshots (delete stale array snapshots of VM datastores), "
             "purge-replica-snapshots (delete stale snapshots of offline replica volumes), "
             "purge-all (both purges)"
    )
    parser.add_argument("--no-dry-run", dest='dry_run', action='store_false',
                        help="Run in non dry run mode", required=False)
    parser.add_argument("--dry-run", dest='dry_run', action='store_true',
                        help="Run in dry run mode (Default)", required=False)
    parser.add_argument("-y", "--answer-yes", dest='answer_yes', action='store_true',
                        help="Automatically allow all operations", default=False, required=False)
    parser.add_argument("-k", "--no-verify-ssl", dest='verify', action='store_false',
                        help="Skip SSL connection verification", default=True, required=False)
    parser.set_defaults(dry_run=True)
    parser.add_argument("--pattern", help="Shell-style name pattern of VM array snapshots to delete"
                                          " (default: $SNAPSHOT_NAME_PATTERN)",
                        default=None, required=False)
    parser.add_argument("--replica-pattern", help="Shell-style name pattern of replica snapshots to delete"
                                                  " (default: $REPLICA_SNAPSHOT_NAME_PATTERN)",
                        dest='replica_pattern', default=None, required=False)
    parser.add_argument("--min-age-hours", help="Only delete snapshots at least this old",
                        dest='min_age_hours', default=0, type=float, required=False)
    parser.add_argument("--vm", action='append', help="Only reconcile the VM with this name"
                                                      " (can appear multiple times)",
                        dest='vms', default=list(), required=False)
    parser.add_argument("--stop-on-error", action='store_true', help="Stop at the first failed offline/delete",
                        dest='break_on_error', default=False, required=False)
    parser.add_argument("--sleep", help="Seconds to wait after each deleted snapshot",
                        default=SLEEP_BEFORE_NEXT_OP, type=float, required=False)
    parser.add_argument("--print-all", action='store_true', help="Print all status objects to the log",
                        required=False, default=False)
    parser.add_argument("-v", "--verbose", action='store_true', help="Log debug messages to the console",
                        required=False, default=False)
    parser.add_argument('--online-config', help="Read login parameters interactively",
                        action='store_true', default=False, required=False)
    parser.add_argument('--write-config', help="Write env file ('{}' in local directory) with login parameters"
                                               .format(ENV_FILE),
                        action='store_true', default=False, required=False)
    parser.add_argument('--overwrite-config', help="Overwrite env file ('{}' in local directory) with login parameters"
                                                   .format(ENV_FILE),
                        action='store_true', default=False, required=False)
    parser.add_argument('--write-passwords', help="Write passwords to env file",
                        action='store_true', default=False, required=False)
    # Specify output of "--version"
    parser.add_argument(
        "--version",
        action="version",
        version="%(prog)s (version {version})".format(version=__version__))
    return parser.parse_args(argv)


def check_settings(args):
    required = list(ARRAY_SETTINGS)
    if args.op in VCENTER_OPS:
        required += VCENTER_SETTINGS
    missing = missing_settings(required)
    if missing:
        msg = ("Not all mandatory environment variables are set: {}\n"
               "use --online-config to update interactively".format(', '.join(missing)))
        logger.error(msg)
        sys.exit(msg)
    if args.op in ['purge-vm-snapshots', 'purge-all'] and not args.pattern:
        msg = "No snapshot name pattern given (--pattern or SNAPSHOT_NAME_PATTERN)"
        logger.error(msg)
        sys.exit(msg)
    if args.op in ['purge-replica-snapshots', 'purge-all'] and not args.replica_pattern:
        msg = "No replica snapshot name pattern given (--replica-pattern or REPLICA_SNAPSHOT_NAME_PATTERN)"
        logger.error(msg)
        sys.exit(msg)


def main(argv=None):
    """ This is executed when run from the command line """
    args = parse_arguments(argv)
    init_logger(Config.LOGS_DIR, verbose=args.verbose)
    init_audit_log(os.path.join(logs_dir_path(Config.LOGS_DIR), AUDIT_LOG_FILE))

    if args.overwrite_config:
        args.write_config = True
    elif args.write_config:
        if os.path.exists(ENV_FILE):
            msg = "File '{}' already exists in local directory, refusing to overwrite".format(ENV_FILE)
            logger.error(msg)
            sys.exit(msg)

    if args.online_config:
        load_config()

    if args.write_config:
        write_config(ENV_FILE, write_passwords=args.write_passwords)

    if args.pattern is None:
        args.pattern = Config.SNAPSHOT_NAME_PATTERN
    if args.replica_pattern is None:
        args.replica_pattern = Config.REPLICA_SNAPSHOT_NAME_PATTERN
    check_settings(args)

    if not Config.ARRAY_PASSWORD:
        Config.ARRAY_PASSWORD = getpass.getpass("Array password: ")
    requester = get_array_requester(args)

    status_dict = defaultdict(OrderedDict)
    if args.op in VCENTER_OPS:
        if not Config.VCENTER_PASSWORD:
            Config.VCENTER_PASSWORD = getpass.getpass("vCenter password: ")
        si = connect_vcenter(Config.VCENTER_HOST,
                             Config.VCENTER_USERNAME,
                             Config.VCENTER_PASSWORD,
                             port=Config.VCENTER_PORT,
                             verify=args.verify and env_flag(Config.VCENTER_VERIFY_SSL))
        status_dict = snapshots_status(args, requester, si.RetrieveContent())
    if args.op in REPLICA_OPS:
        replica_status(args, requester, status_dict)

    if args.op == 'snapshots-status':
        print_snapshots_status(status_dict)
        if args.print_all:
            print_all_snapshots(status_dict)
        sys.exit(0)

    if args.dry_run:
        logger.info("Running in dry-run mode")
    else:
        logger.info("Running in live mode - snapshots will be deleted")
        if not are_you_sure(args):
            sys.exit(0)

    print_snapshots_status(status_dict)
    if args.op in ['purge-vm-snapshots', 'purge-all']:
        label = "Going to delete stale array snapshots matching '{}': {}".format(
            args.pattern, len(status_dict[STALE_SNAPSHOTS])
        )
        clean_vm_snapshots(args, requester, label, status_dict)
    if args.op in ['purge-replica-snapshots', 'purge-all']:
        label = "Going to delete replica snapshots matching '{}': {}".format(
            args.replica_pattern, len(status_dict[REPLICA_SNAPSHOTS])
        )
        clean_replica_snapshots(args, requester, label, status_dict)
    sys.exit(0)


if __name__ == "__main__":
    main()
