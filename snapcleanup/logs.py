"""Console, per-run file and audit logging.

Every offline/delete decision is appended to the audit log as one JSON line so
scheduled runs can be reviewed after the fact.
"""
import os
import sys
import json
import atexit
import logging
from collections import OrderedDict
from datetime import datetime
import dateutil.tz

LOGGER_NAME = "snapshot-cleanup"
LOGS_SUBDIR = "snapshot-cleanup-logs"
AUDIT_LOGGER_NAME = "snapcleanup.audit"
AUDIT_LOG_FILE = "snapshot-cleanup-audit.log"

RESULT_DONE = 'done'
RESULT_DRY_RUN = 'dry-run'
RESULT_SKIPPED = 'skipped'
RESULT_FAILED = 'failed'

logger = logging.getLogger()
audit_logger = logging.getLogger(AUDIT_LOGGER_NAME)
audit_logger.propagate = False


def logs_dir_path(logs_dir):
    return os.path.join(logs_dir, LOGS_SUBDIR)


def init_logger(logs_dir, verbose=False):
    formatter = logging.Formatter('%(asctime)s [%(name)s] %(levelname)-10s %(message)s')
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    console_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    logger.addHandler(console_handler)

    path = logs_dir_path(logs_dir)
    if not os.path.exists(path):
        os.makedirs(path)

    logfile = '{logger_name}-{date}.log'.format(logger_name=LOGGER_NAME, date=datetime.now().strftime("%Y-%m-%d-%H%M"))
    logfile_with_path = os.path.join(path, logfile)

    file_handler = logging.FileHandler(filename=logfile_with_path)
    atexit.register(file_handler.close)
    file_handler.setFormatter(logging.Formatter('%(asctime)s %(levelname)-10s %(message)s \t'
                                                '(%(pathname)s:%(lineno)d)'))
    file_handler.setLevel(logging.DEBUG)
    logger.addHandler(file_handler)

    logger.setLevel(logging.DEBUG)
    # urllib3 logs every connection at DEBUG
    logging.getLogger("urllib3").setLevel(logging.WARNING)

    logger.info("Logger initialized")
    return logfile_with_path


def init_audit_log(path):
    directory = os.path.dirname(path)
    if directory and not os.path.exists(directory):
        os.makedirs(directory)
    handler = logging.FileHandler(filename=path, mode='a')
    handler.setFormatter(logging.Formatter('%(message)s'))
    handler.setLevel(logging.INFO)
    atexit.register(handler.close)
    audit_logger.addHandler(handler)
    audit_logger.setLevel(logging.INFO)
    logger.info("Audit log: %s", path)
    return handler


def audit(action, kind, obj_id, name, result, **details):
    record = OrderedDict()
    record['time'] = datetime.now(dateutil.tz.tzutc()).strftime('%Y-%m-%dT%H:%M:%SZ')
    record['action'] = action
    record['kind'] = kind
    record['id'] = obj_id
    record['name'] = name
    record['result'] = result
    for key in sorted(details):
        record[key] = details[key]
    line = json.dumps(record, default=str)
    audit_logger.info(line)
    return line
