"""aiortc-backed peer connection and local media capture for the client session.

Offers and answers are exchanged whole (no trickle ICE): aiortc finishes ICE
gathering inside setLocalDescription, so the local description is complete by
the time it is returned as a signal payload.
"""

from typing import Any, Dict, List, Optional

from aiortc import RTCConfiguration, RTCIceServer, RTCPeerConnection, RTCSessionDescription
from aiortc.contrib.media import MediaPlayer

from chat_client.errors import MediaUnavailableError
from constants import MEDIA_DEVICE, MEDIA_FORMAT, STUN_URL
from logging_config import get_logger

logger = get_logger(__name__)


class LocalMedia:
    """Camera and microphone capture through aiortc's MediaPlayer."""

    def __init__(self, device: str = MEDIA_DEVICE, media_format: str = MEDIA_FORMAT, options: Optional[Dict[str, str]] = None):
        self.device = device
        self.media_format = media_format or None
        self.options = options or {}
        self._player = None

    @property
    def active(self) -> bool:
        return self._player is not None

    @property
    def tracks(self) -> List[Any]:
        if self._player is None:
            return []
        return [track for track in (self._player.audio, self._player.video) if track is not None]

    async def capture(self):
        if self._player is not None:
            return self._player
        if not self.device:
            raise MediaUnavailableError("No capture device configured; set MEDIA_DEVICE")
        try:
            self._player = MediaPlayer(self.device, format=self.media_format, options=self.options)
        except Exception as e:
            raise MediaUnavailableError(f"Could not open capture device {self.device}: {e}") from e
        logger.info(f"Capturing local media from {self.device}")
        return self._player

    def release(self):
        for track in self.tracks:
            track.stop()
        if self._player is not None:
            logger.info(f"Released local media from {self.device}")
        self._player = None


def _description(signal: Dict[str, Any]) -> RTCSessionDescription:
    return RTCSessionDescription(sdp=signal["sdp"], type=signal["type"])


class AiortcPeer:
    def __init__(self, media: Optional[LocalMedia] = None, stun_url: str = STUN_URL):
        config = RTCConfiguration(iceServers=[RTCIceServer(urls=[stun_url])])
        self.pc = RTCPeerConnection(config)
        self.remote_tracks = []
        if media is not None:
            for track in media.tracks:
                self.pc.addTrack(track)

        @self.pc.on("track")
        def on_track(track):
            logger.info(f"Receiving remote {track.kind} track")
            self.remote_tracks.append(track)

        @self.pc.on("connectionstatechange")
        async def on_connection_state_change():
            logger.debug(f"Peer connection state: {self.pc.connectionState}")

    async def create_offer(self) -> Dict[str, str]:
        offer = await self.pc.createOffer()
        await self.pc.setLocalDescription(offer)
        return {"type": self.pc.localDescription.type, "sdp": self.pc.localDescription.sdp}

    async def create_answer(self, offer: Dict[str, Any]) -> Dict[str, str]:
        await self.pc.setRemoteDescription(_description(offer))
        answer = await self.pc.createAnswer()
        await self.pc.setLocalDescription(answer)
        return {"type": self.pc.localDescription.type, "sdp": self.pc.localDescription.sdp}

    async def apply_answer(self, answer: Dict[str, Any]):
        await self.pc.setRemoteDescription(_description(answer))

    async def close(self):
        await self.pc.close()


def aiortc_peer_factory(media: LocalMedia) -> AiortcPeer:
    return AiortcPeer(media)
