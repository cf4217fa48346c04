import atexit
import logging

import requests
from munch import munchify

from snapcleanup.config import Config

logger = logging.getLogger(__name__)

ARRAY_LIST_LIMIT = 1024
MAX_ARRAY_REQUEST_LOOPS = 100
READ_ONLY_METHODS = ['GET', 'HEAD']

array_requesters_cache = dict()


class ArrayRequestError(Exception):
    def __init__(self, message, status_code=None):
        super(ArrayRequestError, self).__init__(message)
        self.status_code = status_code


def array_url_prefix(host, port, use_ssl=True):
    scheme = 'https' if use_ssl else 'http'
    if use_ssl and str(port) == '443':
        port_str = ''
    elif not use_ssl and str(port) == '80':
        port_str = ''
    else:
        port_str = ':{}'.format(port)
    return '{scheme}://{host}{port_str}'.format(scheme=scheme, host=host, port_str=port_str)


def _error_text(response):
    try:
        messages = response.json().get('messages', [])
    except ValueError:
        return response.text
    texts = [m.get('text') or m.get('code') for m in messages if isinstance(m, dict)]
    return '; '.join(t for t in texts if t) or response.text


def check_response(response):
    if response is None:
        raise ArrayRequestError("Empty array response")
    if response.status_code >= 300:
        raise ArrayRequestError("Array request failed with {}: {}".format(response.status_code, _error_text(response)),
                                status_code=response.status_code)
    if not response.content:
        return munchify({})
    try:
        return munchify(response.json())
    except ValueError:
        logger.debug("Failed to parse array response body: %s", response.text)
        raise ArrayRequestError("Array response is not JSON", status_code=response.status_code)


def login(session, url_prefix, username, password):
    logger.info("Going to login to array %s as %s", url_prefix, username)
    response = session.post('{}/v1/tokens'.format(url_prefix),
                            json={'data': {'username': username, 'password': password}})
    token = check_response(response).get('data')
    if not token or not token.get('session_token'):
        raise ArrayRequestError("Array login returned no session token")
    session.headers['X-Auth-Token'] = token.session_token
    return token


def _logout(session, url_prefix, token_id):
    try:
        session.delete('{}/v1/tokens/{}'.format(url_prefix, token_id))
        logger.debug("Array session %s closed", token_id)
    except requests.RequestException as ex:
        logger.debug("Failed to close array session %s: %s", token_id, ex)


def get_array_requester(args):
    cache_key = "{}:{}.{}".format(Config.ARRAY_HOST, Config.ARRAY_PORT, Config.ARRAY_USERNAME)
    if array_requesters_cache.get(cache_key):
        return array_requesters_cache.get(cache_key)

    session = requests.Session()
    session.headers.update({'Content-Type': 'application/json'})
    session.verify = args.verify and Config.ARRAY_VERIFY_SSL
    url_prefix = array_url_prefix(Config.ARRAY_HOST, Config.ARRAY_PORT)
    token = login(session, url_prefix, Config.ARRAY_USERNAME, Config.ARRAY_PASSWORD)
    if token.get('id'):
        atexit.register(_logout, session, url_prefix, token.id)

    dry_run = args.dry_run
    if dry_run:
        logger.info("Array requester loaded in dry run mode")
    else:
        logger.info("Array requester is loaded")

    def array_request(method, url, **kwargs):
        full_url = '{url_prefix}{url}'.format(url_prefix=url_prefix, url=url)
        logger.debug("Requesting: %s %s", method, full_url)
        if dry_run and method not in READ_ONLY_METHODS:
            logger.debug("Dry run - not sending %s %s", method, full_url)
            return None
        return session.request(method, full_url, **kwargs)

    array_requesters_cache[cache_key] = array_request
    return array_request


def list_objects(requester, url, params=None):
    results = list()
    start_row = 0
    for _ in range(MAX_ARRAY_REQUEST_LOOPS):
        page_params = dict(params or {})
        page_params['startRow'] = start_row
        page_params['endRow'] = start_row + ARRAY_LIST_LIMIT
        body = check_response(requester('GET', url, params=page_params))
        data = body.get('data') or []
        results.extend(data)
        total = body.get('totalRows')
        if total is None:
            total = len(results) if len(data) < ARRAY_LIST_LIMIT else len(results) + 1
        if not data or len(results) >= total:
            return results
        start_row += len(data)
    raise ArrayRequestError("Listing {} did not finish after {} requests".format(url, MAX_ARRAY_REQUEST_LOOPS))


def list_volumes(requester):
    return list_objects(requester, '/v1/volumes/detail')


def list_volume_snapshots(requester, volume_id):
    return list_objects(requester, '/v1/snapshots/detail', params={'vol_id': volume_id})


def offline_snapshot(requester, snapshot):
    logger.debug("Setting snapshot %s (%s) offline", snapshot.name, snapshot.id)
    response = requester('PUT', '/v1/snapshots/{}'.format(snapshot.id), json={'data': {'online': False}})
    if response is None:
        return None
    return check_response(response)


def delete_snapshot(requester, snapshot):
    logger.debug("Deleting snapshot %s (%s)", snapshot.name, snapshot.id)
    response = requester('DELETE', '/v1/snapshots/{}'.format(snapshot.id))
    if response is None:
        return None
    return check_response(response)


def volumes_by_serial(volumes):
    serial_map = dict()
    for volume in volumes:
        serial = volume.get('serial_number')
        if serial:
            serial_map[serial.lower()] = volume
    return serial_map
