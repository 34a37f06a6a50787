import hashlib
from typing import BinaryIO, Optional

import libtorrent as lt

from .content import ContentDescriptor
from .utils import load_file

# Exercise the engine's handling of broken tracker URLs.
INVALID_TRACKER_URL = "http:"
INVALID_TRACKER_PROTOCOL = "foo://non/existent-name.com/announce"


def get_v1_info_hash(info: lt.torrent_info) -> str:
    """Get the v1 info hash from a torrent_info object.

    For hybrid v1+v2 torrents, info_hash() returns the truncated v2 hash.
    """
    hashes = info.info_hashes()
    if hashes.has_v1():
        return str(hashes.v1)
    return str(info.info_hash())


def clone_torrent(info: lt.torrent_info) -> lt.torrent_info:
    # every add_torrent gets its own copy, sessions must not share one
    return lt.torrent_info(info)


def make_torrent(descriptor: ContentDescriptor) -> lt.torrent_info:
    """v1 torrent whose piece hashes come straight from the descriptor."""
    fs = lt.file_storage()
    for path, size in descriptor.files:
        fs.add_file(path, size)

    t = lt.create_torrent(fs, descriptor.piece_size, lt.create_torrent.v1_only)
    t.set_creator("ltfixture")
    for i, piece_hash in enumerate(descriptor.piece_hashes):
        t.set_hash(i, piece_hash)
    return lt.torrent_info(t.generate())


def create_torrent(
    file: Optional[BinaryIO] = None,
    name: str = "temporary",
    piece_size: int = 16 * 1024,
    num_pieces: int = 13,
    add_tracker: bool = True,
    ssl_certificate: str = "",
) -> lt.torrent_info:
    """Single-file torrent where every piece is the alphabet repeated.

    If `file` is given the payload is written to it as well.
    """
    total_size = piece_size * num_pieces
    fs = lt.file_storage()
    fs.add_file(name, total_size)
    t = lt.create_torrent(fs, piece_size, lt.create_torrent.v1_only)
    if add_tracker:
        t.add_tracker(INVALID_TRACKER_URL)
        t.add_tracker(INVALID_TRACKER_PROTOCOL)

    if ssl_certificate:
        try:
            t.set_root_cert(load_file(ssl_certificate).decode())
        except OSError as e:
            print(f"failed to load SSL certificate: {e}")

    piece = bytes(ord("A") + i % 26 for i in range(piece_size))
    piece_hash = hashlib.sha1(piece).digest()
    for i in range(num_pieces):
        t.set_hash(i, piece_hash)

    if file is not None:
        for _ in range(num_pieces):
            file.write(piece)

    return lt.torrent_info(t.generate())
