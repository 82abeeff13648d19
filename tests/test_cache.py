import json
from datetime import datetime, timezone

import pytest

from blu.cache import DiscoveryCache, match_by_name, normalize_name
from blu.device import Device


def _device(host, port=11000, name='', id=None):
    return Device(id=f"{host}:{port}" if id is None else id, host=host, port=port, name=name)


def test_unaddressable_devices_are_dropped():
    cache = DiscoveryCache.from_devices([
        _device('10.0.0.1'),
        _device('', name='No Host'),
        _device('10.0.0.2', port=0),
        _device('10.0.0.3', id=''),
    ])

    assert [d.id for d in cache.devices] == ['10.0.0.1:11000', '10.0.0.3:11000']


def test_save_and_load(tmp_path):
    path = tmp_path / 'nested' / 'discovery.json'
    updated = datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    cache = DiscoveryCache.from_devices([_device('10.0.0.1', name='Kitchen')], updated_at=updated)

    cache.save(path)

    raw = path.read_text()
    assert raw.endswith('\n')
    assert json.loads(raw)['devices'][0] == {
        'id': '10.0.0.1:11000', 'host': '10.0.0.1', 'port': 11000, 'type': '', 'name': 'Kitchen',
    }
    assert DiscoveryCache.load(path) == cache


def test_loading_filters_bad_records(tmp_path):
    path = tmp_path / 'discovery.json'
    path.write_text(json.dumps({
        'updated_at': '2026-01-02T03:04:05+00:00',
        'devices': [
            {'id': '10.0.0.1:11000', 'host': '10.0.0.1', 'port': 11000},
            {'id': 'broken', 'host': '', 'port': 11000},
        ],
    }))

    assert [d.id for d in DiscoveryCache.load(path).devices] == ['10.0.0.1:11000']


def test_missing_file_is_empty_cache(tmp_path):
    cache = DiscoveryCache.load(tmp_path / 'missing.json')

    assert cache.devices == []
    assert cache.updated_at is None


def test_corrupt_file_is_a_value_error(tmp_path):
    path = tmp_path / 'discovery.json'
    for text in ('{not json', '[]', json.dumps({'devices': [{'host': '10.0.0.1', 'port': 'eleven'}]})):
        path.write_text(text)
        with pytest.raises(ValueError):
            DiscoveryCache.load(path)


def test_lookup_by_id_or_host_port():
    cache = DiscoveryCache(devices=[_device('10.0.0.1', id='kitchen-id')])

    assert cache.lookup('kitchen-id').host == '10.0.0.1'
    assert cache.lookup('10.0.0.1:11000').id == 'kitchen-id'
    assert cache.lookup('10.0.0.2:11000') is None


def test_normalize_name():
    assert normalize_name('  Living-Room 2 ') == 'livingroom2'
    assert normalize_name('Küche') == 'küche'
    assert normalize_name(' - ') == ''


def test_exact_matches_beat_substring_matches():
    devices = [
        _device('10.0.0.1', name='Kitchen'),
        _device('10.0.0.2', name='Kitchen Bar'),
        _device('10.0.0.3', name='Den'),
        _device('10.0.0.4'),
    ]

    assert [d.host for d in match_by_name('kitchen', devices)] == ['10.0.0.1']
    assert [d.host for d in match_by_name('bar', devices)] == ['10.0.0.2']
    assert [d.host for d in match_by_name('kitch', devices)] == ['10.0.0.1', '10.0.0.2']
    assert [d.host for d in match_by_name('the den speaker', devices)] == ['10.0.0.3']
    assert match_by_name('  ', devices) == []
    assert DiscoveryCache(devices=devices).find_by_name('Den') == [devices[2]]
