"""Shared fixtures: synthetic Velodyne captures and small point clouds."""

import struct

import dpkt
import numpy as np
import pytest

from pcd_tool.codecs.pcd import PcdWriter
from pcd_tool.records import LIBPCL_SCHEMA, empty_records

STRONGEST, LAST, DUAL = 0x37, 0x38, 0x39
VLP16_PRODUCT = 0x22


def velodyne_payload(azimuths, distances=500, intensity=10, mode=STRONGEST, timestamp_us=0):
    """Build one 1206-byte data packet.

    *azimuths* lists the 12 block azimuths (centidegrees); *distances* is a
    scalar or one distance (in sensor units) per block.
    """
    assert len(azimuths) == 12
    if np.isscalar(distances):
        distances = [distances] * 12
    body = b""
    for azimuth, distance in zip(azimuths, distances):
        body += b"\xff\xee" + struct.pack("<H", azimuth)
        body += struct.pack("<HB", distance, intensity) * 32
    return body + struct.pack("<IBB", timestamp_us, mode, VLP16_PRODUCT)


def udp_frame(payload, port=2368):
    """Wrap *payload* in Ethernet/IPv4/UDP."""
    udp = dpkt.udp.UDP(sport=port, dport=port, data=payload)
    udp.ulen = len(udp)
    ip = dpkt.ip.IP(
        src=b"\xc0\xa8\x01\xc9",
        dst=b"\xff\xff\xff\xff",
        p=dpkt.ip.IP_PROTO_UDP,
        data=udp,
    )
    ip.len = len(ip)
    eth = dpkt.ethernet.Ethernet(type=dpkt.ethernet.ETH_TYPE_IP, data=ip)
    return bytes(eth)


def write_capture(path, payloads):
    with open(path, "wb") as fh:
        writer = dpkt.pcap.Writer(fh)
        for i, payload in enumerate(payloads):
            writer.writepkt(udp_frame(payload), ts=1.0 + i * 0.001)
    return path


# One packet per frame: block azimuths 0, 10, ..., 110 degrees.
SINGLE_AZIMUTHS = [1000 * i for i in range(12)]
# Dual mode: block pairs share an azimuth.
DUAL_AZIMUTHS = [2000 * (i // 2) for i in range(12)]


@pytest.fixture
def capture(tmp_path):
    """Factory writing a capture of *frames* single-packet frames."""

    def make(frames, name="drive.pcap", mode=STRONGEST, distances=500, extra=()):
        azimuths = DUAL_AZIMUTHS if mode == DUAL else SINGLE_AZIMUTHS
        payloads = [
            velodyne_payload(azimuths, distances=distances, mode=mode, timestamp_us=1000 * i)
            for i in range(frames)
        ]
        payloads.extend(extra)
        return write_capture(tmp_path / name, payloads)

    return make


@pytest.fixture
def cloud():
    """Five libpcl records with intensity."""
    records = empty_records(5)
    records["x"] = [1.0, -2.0, 0.0, 3.5, 10.0]
    records["y"] = [0.5, 4.0, 0.0, -1.25, 20.0]
    records["z"] = [2.0, 0.0, 0.0, 7.0, -30.0]
    records["intensity"] = [0.1, 0.2, 0.0, 0.9, 1.0]
    return records


@pytest.fixture
def libpcl_file(tmp_path, cloud):
    path = tmp_path / "scan.pcd"
    with PcdWriter(path, LIBPCL_SCHEMA) as writer:
        writer.push(cloud)
    return path
