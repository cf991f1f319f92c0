"""Shared fixtures: an independent container writer for building test vaults."""

import base64
import gzip
import hashlib
import os
import struct
import xml.etree.ElementTree as ET

import pytest
from Crypto.Cipher import Salsa20
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

AES_UUID = bytes.fromhex("31c1f2e6bf714350be5805216afc5aff")
SALSA20_NONCE = bytes.fromhex("e830094b97205d2a")

PASSWORD = "T3st!Passw0rd#Str0ng"
FAST_ROUNDS = 10


def header_field(field_id, data):
    return struct.pack("<BH", field_id, len(data)) + data


def build_header(*, master_seed, transform_seed, iv, stream_key, start_bytes,
                 rounds=FAST_ROUNDS, compression=0, inner_stream=2,
                 cipher_id=AES_UUID, version=(3, 1), extra_fields=()):
    minor_major = struct.pack("<HH", version[1], version[0])
    out = struct.pack("<II", 0x9AA2D903, 0xB54BFB67) + minor_major
    out += header_field(2, cipher_id)
    out += header_field(3, struct.pack("<I", compression))
    out += header_field(4, master_seed)
    out += header_field(5, transform_seed)
    out += header_field(6, struct.pack("<Q", rounds))
    out += header_field(7, iv)
    out += header_field(8, stream_key)
    out += header_field(9, start_bytes)
    out += header_field(10, struct.pack("<I", inner_stream))
    for field_id, data in extra_fields:
        out += header_field(field_id, data)
    out += header_field(0, b"\r\n\r\n")
    return out


def build_blocks(data, block_size=1024 * 1024, terminal_hash=bytes(32)):
    out = b""
    index = 0
    for offset in range(0, len(data), block_size):
        chunk = data[offset:offset + block_size]
        out += struct.pack("<I", index) + hashlib.sha256(chunk).digest()
        out += struct.pack("<i", len(chunk)) + chunk
        index += 1
    out += struct.pack("<I", index) + terminal_hash + struct.pack("<i", 0)
    return out


def expected_key(password, master_seed, transform_seed, rounds):
    raw = password.encode("utf-8") if isinstance(password, str) else password
    key = hashlib.sha256(hashlib.sha256(raw).digest()).digest()
    encryptor = Cipher(algorithms.AES(transform_seed), modes.ECB()).encryptor()
    for _ in range(rounds):
        key = encryptor.update(key)
    transformed = hashlib.sha256(key).digest()
    return hashlib.sha256(master_seed + transformed).digest()


def protect_values(root, stream_key):
    """Encrypt every Protected="True" value in document order."""
    cipher = Salsa20.new(key=hashlib.sha256(stream_key).digest(), nonce=SALSA20_NONCE)
    for element in root.iter():
        flag = next((v for k, v in element.attrib.items() if k.lower() == "protected"), None)
        if flag is None or flag.lower() != "true":
            continue
        plain = (element.text or "").encode("utf-8")
        if not plain:
            continue
        element.text = base64.b64encode(cipher.encrypt(plain)).decode("ascii")
    return root


def build_container(xml, password=PASSWORD, *, compress=False, rounds=FAST_ROUNDS,
                    block_size=1024 * 1024, protect=True, header_hash=False,
                    start_bytes=None, blocks=None, inner_stream=2, version=(3, 1),
                    extra_fields=(), pad=True):
    """
    Serialize ``xml`` (str or Element) into container bytes.

    ``blocks`` replaces the generated hashed block stream when given, so
    tests can hand-craft damaged framing.
    """
    master_seed = os.urandom(32)
    transform_seed = os.urandom(32)
    iv = os.urandom(16)
    stream_key = os.urandom(32)
    start = start_bytes or os.urandom(32)

    header = build_header(
        master_seed=master_seed, transform_seed=transform_seed, iv=iv,
        stream_key=stream_key, start_bytes=start, rounds=rounds,
        compression=1 if compress else 0, inner_stream=inner_stream,
        version=version, extra_fields=extra_fields,
    )

    root = ET.fromstring(xml) if isinstance(xml, str) else xml
    if header_hash:
        meta = root.find("Meta")
        if meta is None:
            meta = ET.Element("Meta")
            root.insert(0, meta)
        ET.SubElement(meta, "HeaderHash").text = base64.b64encode(
            hashlib.sha256(header).digest()).decode("ascii")
    if protect:
        protect_values(root, stream_key)
    document = ET.tostring(root, encoding="utf-8")

    if compress:
        document = gzip.compress(document)
    if blocks is None:
        blocks = build_blocks(document, block_size=block_size)

    plaintext = start + blocks
    if pad:
        padder = padding.PKCS7(128).padder()
        plaintext = padder.update(plaintext) + padder.finalize()
    key = expected_key(password, master_seed, transform_seed, rounds)
    encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
    return header + encryptor.update(plaintext) + encryptor.finalize()


SIMPLE_XML = (
    "<root><entry protected=\"true\">hunter2-secret!!</entry></root>"
)

VAULT_XML = """<KeePassFile>
  <Meta>
    <Generator>vaultread-tests</Generator>
    <DatabaseName>Test Vault</DatabaseName>
  </Meta>
  <Root>
    <Group>
      <UUID>AAAAAAAAAAAAAAAAAAAAAA==</UUID>
      <Name>Root</Name>
      <Entry>
        <UUID>AQEBAQEBAQEBAQEBAQEBAQ==</UUID>
        <String><Key>Title</Key><Value>Mail</Value></String>
        <String><Key>UserName</Key><Value>alice</Value></String>
        <String><Key>Password</Key><Value Protected="True">s3cr3t-mail</Value></String>
        <String><Key>URL</Key><Value>https://mail.example.org</Value></String>
      </Entry>
      <Group>
        <UUID>AgICAgICAgICAgICAgICAg==</UUID>
        <Name>Work</Name>
        <Entry>
          <UUID>AwMDAwMDAwMDAwMDAwMDAw==</UUID>
          <String><Key>Title</Key><Value>VPN</Value></String>
          <String><Key>UserName</Key><Value>bob</Value></String>
          <String><Key>Password</Key><Value Protected="True">vpn-pässwörd 世界</Value></String>
          <String><Key>Notes</Key><Value Protected="True">multi
line note</Value></String>
        </Entry>
      </Group>
    </Group>
  </Root>
</KeePassFile>"""


@pytest.fixture
def container_file(tmp_path):
    """Factory writing a built container to disk and returning its path."""
    def _write(xml=VAULT_XML, name="vault.kdbx", **kwargs):
        path = tmp_path / name
        path.write_bytes(build_container(xml, **kwargs))
        return path
    return _write
