"""Core orchestrator - wires transport, retry policy and upload sessions."""
from typing import Optional, Union

from ..models import Destination, UploadConfig, UploadResult
from ..protocols import IByteSource, ITransport
from ..services.s3_transport import S3Transport
from .chunker import StreamChunker
from .session import UploadSession


class StreamUploadOrchestrator:
    """
    Orchestrates streaming uploads using an injected or default transport.

    Usage:
        # Default S3 transport (boto3 credential chain)
        async with StreamUploadOrchestrator(destination, config) as orchestrator:
            result = await orchestrator.upload(sys.stdin.buffer)

        # Observe the session before running it
        async with StreamUploadOrchestrator(destination, config) as orchestrator:
            session = orchestrator.create_session()
            session.on_part_complete(display.on_part_complete)
            result = await session.run(source)
    """

    def __init__(
        self,
        destination: Union[Destination, str],
        config: Optional[UploadConfig] = None,
        transport: Optional[ITransport] = None,
        region: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        profile: Optional[str] = None,
    ):
        """
        Initialize orchestrator.

        Args:
            destination: Destination or ``s3://bucket/key`` string
            config: Upload configuration (validated here)
            transport: Pre-built transport; an S3Transport is created when omitted
            region: AWS region for the default transport
            endpoint_url: Custom S3 endpoint for the default transport
            profile: AWS profile name for the default transport
        """
        if isinstance(destination, str):
            destination = Destination.parse(destination)
        self._destination = destination
        self._config = (config or UploadConfig()).validate()
        self._external_transport = transport
        self._region = region
        self._endpoint_url = endpoint_url
        self._profile = profile
        self._transport: Optional[ITransport] = None
        self._owned_transport: Optional[S3Transport] = None

    @property
    def destination(self) -> Destination:
        return self._destination

    @property
    def config(self) -> UploadConfig:
        return self._config

    async def __aenter__(self):
        """Initialize transport."""
        if self._external_transport is not None:
            self._transport = self._external_transport
        else:
            self._owned_transport = S3Transport(
                self._destination,
                region=self._region,
                endpoint_url=self._endpoint_url,
                profile=self._profile,
                request_timeout=self._config.request_timeout,
            )
            self._transport = await self._owned_transport.__aenter__()
        return self

    async def __aexit__(self, *args):
        """Cleanup resources."""
        if self._owned_transport is not None:
            await self._owned_transport.__aexit__(*args)
            self._owned_transport = None
        self._transport = None

    def create_session(self) -> UploadSession:
        """New single-use session bound to this orchestrator's transport."""
        if self._transport is None:
            raise RuntimeError("StreamUploadOrchestrator not initialized. Use 'async with' context.")
        return UploadSession(self._transport, self._destination, self._config)

    async def upload(self, source: Union[IByteSource, StreamChunker]) -> UploadResult:
        """Upload the whole stream and return its terminal result."""
        return await self.create_session().run(source)
