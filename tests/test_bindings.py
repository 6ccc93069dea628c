import json

import pytest

from activation.errors import Deactivated, DeviceMismatch, Expired, NotBound, NotFound
from activation.models import CodeRecord


def stored(codes_file, code):
    data = json.loads(codes_file.read_text(encoding='utf-8'))
    return next(c for c in data['codes'] if c['code'] == code)


def remote(store, code):
    return next(c for c in store.document['codes'] if c['code'] == code)


def test_first_verify_binds_device(manager, codes_file, store):
    result = manager.verify('VIP-AAA111', 'dev1')

    assert result.isNewDevice is True
    assert result.boundDeviceId == 'dev1'
    assert result.writeback.updated is True
    assert stored(codes_file, 'VIP-AAA111')['boundDeviceId'] == 'dev1'
    assert stored(codes_file, 'VIP-AAA111')['boundAt']
    assert remote(store, 'VIP-AAA111')['boundDeviceId'] == 'dev1'
    assert store.puts == ['chore: bind device for VIP-AAA111 at %s' % stored(codes_file, 'VIP-AAA111')['boundAt']]


def test_same_device_is_not_new(manager, store):
    manager.verify('VIP-AAA111', 'dev1')
    for _ in range(3):
        result = manager.verify('VIP-AAA111', 'dev1')
        assert result.isNewDevice is False
        assert result.boundDeviceId == 'dev1'
    assert len(store.puts) == 1


def test_other_device_is_rejected(manager, registry):
    manager.verify('VIP-AAA111', 'dev1')
    with pytest.raises(DeviceMismatch):
        manager.verify('VIP-AAA111', 'dev2')
    assert registry.lookup('VIP-AAA111').boundDeviceId == 'dev1'


def test_unbind_then_verify_other_device(manager):
    manager.verify('VIP-AAA111', 'dev1')
    previous, writeback = manager.unbind('VIP-AAA111')
    assert previous == 'dev1'
    assert writeback.updated is True

    result = manager.verify('VIP-AAA111', 'dev2')
    assert result.isNewDevice is True
    assert result.boundDeviceId == 'dev2'


def test_unknown_code(manager):
    with pytest.raises(NotFound):
        manager.verify('VIP-NOPE00', 'dev1')


def test_deactivated_code(manager):
    with pytest.raises(Deactivated):
        manager.verify('VIP-OFF000', 'dev1')


def test_expired_code_rejected_even_when_bound(manager, registry):
    registry.update('VIP-OLD000', lambda r: r.bind('dev1'))
    with pytest.raises(Expired):
        manager.verify('VIP-OLD000', 'dev1')
    with pytest.raises(Expired):
        manager.verify('VIP-OLD000', 'dev2')


def test_binding_from_file_is_honoured(manager, registry):
    registry.update('VIP-AAA111', lambda r: r.bind('dev9'))
    manager.cache.reset()
    with pytest.raises(DeviceMismatch):
        manager.verify('VIP-AAA111', 'dev1')
    assert manager.verify('VIP-AAA111', 'dev9').isNewDevice is False


def test_failed_writeback_keeps_local_binding(manager, store, registry):
    store.broken = True
    result = manager.verify('VIP-AAA111', 'dev1')

    assert result.isNewDevice is True
    assert result.writeback.updated is False
    assert 'Fetch failed' in result.writeback.error
    assert registry.lookup('VIP-AAA111').boundDeviceId == 'dev1'
    assert manager.cache.get('VIP-AAA111') is None
    assert 'boundDeviceId' not in remote(store, 'VIP-AAA111')

    # still bound locally, so the same device passes and another is rejected
    assert manager.verify('VIP-AAA111', 'dev1').isNewDevice is False
    with pytest.raises(DeviceMismatch):
        manager.verify('VIP-AAA111', 'dev2')


def test_unconfigured_store_is_local_only(manager, store, registry):
    store.is_configured = False
    result = manager.verify('VIP-AAA111', 'dev1')
    assert result.writeback.updated is False
    assert 'not configured' in result.writeback.error
    assert registry.lookup('VIP-AAA111').boundDeviceId == 'dev1'


def test_conflict_is_retried(manager, store):
    store.conflicts = 2
    result = manager.verify('VIP-AAA111', 'dev1')
    assert result.writeback.updated is True
    assert remote(store, 'VIP-AAA111')['boundDeviceId'] == 'dev1'


def test_conflict_gives_up_after_max_attempts(manager, store):
    store.conflicts = store.max_attempts
    result = manager.verify('VIP-AAA111', 'dev1')
    assert result.writeback.updated is False
    assert 'Gave up after 3 attempts' in result.writeback.error


def test_device_unbind_requires_binding(manager):
    with pytest.raises(NotBound):
        manager.unbind('VIP-AAA111', require_bound=True)


def test_unbind_unknown_code(manager):
    with pytest.raises(NotFound):
        manager.unbind('VIP-NOPE00')


def test_rebind(manager, registry, store):
    manager.verify('VIP-AAA111', 'dev1')
    old, writeback = manager.rebind('VIP-AAA111', 'dev2')

    assert old == 'dev1'
    assert writeback.updated is True
    assert registry.lookup('VIP-AAA111').boundDeviceId == 'dev2'
    assert remote(store, 'VIP-AAA111')['boundDeviceId'] == 'dev2'
    assert manager.cache.get('VIP-AAA111').deviceId == 'dev2'
    assert manager.verify('VIP-AAA111', 'dev2').isNewDevice is False


def test_rebind_unbound_code(manager):
    old, _ = manager.rebind('VIP-AAA111', 'dev3')
    assert old is None


def test_clear(manager, registry, store):
    manager.verify('VIP-AAA111', 'dev1')
    registry.update('VIP-OFF000', lambda r: r.bind('dev2'))

    writeback = manager.clear()

    assert writeback.updated is True
    assert manager.bindings() == []
    assert registry.list('bound') == []
    assert all(c['boundDeviceId'] is None for c in store.document['codes'])


def test_bindings_and_devices_listing(manager):
    manager.verify('VIP-AAA111', 'dev1')

    bindings = manager.bindings()
    assert len(bindings) == 1
    assert bindings[0]['code'] == 'VIP-AAA111'
    assert bindings[0]['deviceId'] == 'dev1'

    devices = manager.devices()
    assert devices == [{
        'code': 'VIP-AAA111',
        'note': 'first',
        'boundDeviceId': 'dev1',
        'boundAt': devices[0]['boundAt'],
        'expiresAt': None,
        'active': True,
    }]


def test_warm_loads_existing_bindings(registry, repository):
    from activation.bindings import BindingManager

    registry.update('VIP-AAA111', lambda r: r.bind('dev7'))
    manager = BindingManager(repository)
    manager.warm()
    assert manager.cache.get('VIP-AAA111').deviceId == 'dev7'


def test_code_without_active_key_still_verifies(manager, registry):
    registry.insert([CodeRecord.from_dict({'code': 'VIP-BARE01'})])
    result = manager.verify('VIP-BARE01', 'dev1')
    assert result.isNewDevice is True
    assert registry.lookup('VIP-BARE01').active is None
