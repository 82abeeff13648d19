import pytest

from blu.device import Device, parse_device


def test_parse_device_forms():
    assert parse_device('192.168.1.20') == Device(id='192.168.1.20:11000', host='192.168.1.20', port=11000)
    assert parse_device(' 192.168.1.20:11001 ').port == 11001
    assert parse_device('http://player.local:8080/').id == 'player.local:8080'
    assert parse_device('https://player.local').port == 11000
    assert parse_device('[fe80::1]:11000').id == '[fe80::1]:11000'
    assert parse_device('fe80::1').host == 'fe80::1'


@pytest.mark.parametrize('text', ['', '   ', ':11000', 'host:notaport', 'host:0', '[fe80::1'])
def test_parse_device_rejects(text):
    with pytest.raises(ValueError):
        parse_device(text)


def test_to_dict_omits_empty_optional_fields():
    device = Device(id='1.1.1.1:11000', host='1.1.1.1', port=11000, type='musc')

    assert device.to_dict() == {'id': '1.1.1.1:11000', 'host': '1.1.1.1', 'port': 11000, 'type': 'musc'}

    device.version = '4'
    device.source = 'mdns+lsdp'
    assert Device.from_dict(device.to_dict()) == device


def test_base_url():
    assert Device(id='x', host='10.0.0.2', port=11000).base_url == 'http://10.0.0.2:11000/'
    assert Device(id='x', host='', port=0).base_url == 'http://127.0.0.1:11000/'
