from torwire.bencode import bencode_data, decode_bencode, decode_bencode_partial
from torwire.config import ClientConfig, generate_peer_id
from torwire.handshake import PeerConnection, PeerHandshake, handshake_with_peer
from torwire.torrent import Torrent, parse_torrent
from torwire.tracker import Peer, TrackerResponse, fetch_peers, get_peers
