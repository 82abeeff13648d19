import pytest

from blu.discovery.packet import (
    LSDPRecord,
    build_announce,
    build_query,
    class_to_type,
    is_player_class,
    parse_announce,
    parse_packet,
    parse_port,
    record_port,
)

NODE_ID = bytes([0x90, 0x56, 0x82, 0x9F, 0x02, 0x78])
HEADER = bytes([6]) + b'LSDP' + bytes([1])


def _announce(address='192.168.1.20', records=None):
    if records is None:
        records = [LSDPRecord(0x0001, {'port': '11000', 'version': '4.2.1', 'name': 'Kitchen'})]
    return build_announce(NODE_ID, address, records)


def test_query_matches_vendor_bytes():
    assert build_query() == bytes.fromhex('064c534450010551 01ffff'.replace(' ', ''))
    assert len(build_query()) == 11


def test_announce_round_trip():
    packet = _announce(records=[
        LSDPRecord(0x0001, {'port': '11000', 'version': '4.2.1'}),
        LSDPRecord(0x0006, {'port': '11001'}),
    ])

    announces = parse_packet(packet)

    assert len(announces) == 1
    announce = announces[0]
    assert announce.node_id == NODE_ID
    assert announce.address == '192.168.1.20'
    assert [r.device_class for r in announce.records] == [0x0001, 0x0006]
    assert announce.records[0].txt == {'port': '11000', 'version': '4.2.1'}
    assert announce.records[1].txt == {'port': '11001'}


@pytest.mark.parametrize('packet', [
    b'',
    b'\x06LSD',
    b'\x06LSDX\x01',
    b'\x05LSDP\x01\x05Q\x01\xff\xff',
    b'\x20LSDP\x01\x05Q\x01\xff\xff',
    b'\x06lsdp\x01',
])
def test_bad_header_is_not_parsed(packet):
    assert parse_packet(packet) is None


def test_query_packet_parses_to_no_announces():
    assert parse_packet(build_query()) == []


def test_header_only_packet_parses_to_no_announces():
    assert parse_packet(HEADER) == []


def test_unknown_message_types_are_skipped():
    other = bytes([4, ord('X'), 1, 2])
    packet = HEADER + other + _announce()[6:]

    announces = parse_packet(packet)

    assert [a.address for a in announces] == ['192.168.1.20']


def test_malformed_announce_does_not_stop_following_messages():
    good = _announce()[6:]
    bad = bytearray(_announce(address='10.0.0.9')[6:])
    bad[2] = 200  # node id length past the end of the message

    announces = parse_packet(HEADER + bytes(bad) + good)

    assert [a.address for a in announces] == ['192.168.1.20']


def test_zero_length_message_stops_parsing():
    packet = HEADER + _announce()[6:] + bytes([0]) + _announce(address='10.0.0.9')[6:]

    assert [a.address for a in parse_packet(packet)] == ['192.168.1.20']


def test_message_past_packet_end_stops_parsing():
    message = _announce()[6:]
    packet = HEADER + message[:-1]

    assert parse_packet(packet) == []


def test_announce_with_ipv6_length_address_is_rejected():
    message = bytearray([0, ord('A'), 0, 16]) + bytes(16) + bytes([0])
    message[0] = len(message)

    assert parse_announce(bytes(message)) is None


def test_every_truncation_is_rejected_without_raising():
    message = _announce()[6:]
    for n in range(2, len(message)):
        truncated = bytes([n]) + message[1:n]
        assert parse_announce(truncated) is None


def test_empty_txt_key_is_dropped():
    packet = _announce(records=[LSDPRecord(0x0001, {'': 'x', 'version': '3'})])

    record = parse_packet(packet)[0].records[0]

    assert record.txt == {'version': '3'}


def test_encoder_rejects_oversized_fields():
    with pytest.raises(ValueError):
        build_announce(bytes(300), '10.0.0.1', [])


def test_player_classes():
    assert class_to_type(0x0001) == 'musc'
    assert class_to_type(0x0003) == 'musp'
    assert class_to_type(0x0006) == 'musz'
    assert class_to_type(0x0008) == 'mush'
    assert class_to_type(0x0004) == ''
    assert [c for c in range(0x0010) if is_player_class(c)] == [0x0001, 0x0003, 0x0006, 0x0008]
    assert not is_player_class(0xFFFF)


def test_parse_port():
    assert parse_port('11000') == 11000
    for bad in ('0', '70000', 'abc', '', '-1'):
        with pytest.raises(ValueError):
            parse_port(bad)


def test_parse_port_requires_plain_decimal_digits():
    assert parse_port(' 11000 ') == 11000
    for bad in ('1_1000', '+80', '١١٠٠٠', '0x2af8', '11000.0'):
        with pytest.raises(ValueError):
            parse_port(bad)


def test_record_port_defaults_to_bluos_port():
    assert record_port(LSDPRecord(0x0001, {'port': '11001'})) == 11001
    assert record_port(LSDPRecord(0x0001, {'port': 'nope'})) == 11000
    assert record_port(LSDPRecord(0x0001, {})) == 11000
