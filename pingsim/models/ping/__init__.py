from .application import PingApplication, PingStartError, make_signature
from .config import Config, NetworkParams, VerboseMode
from .objects import ProbeRecord, Report
from .transport import InboundPacket, Transport, TransportError
