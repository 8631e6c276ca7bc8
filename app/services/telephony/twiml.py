"""TwiML builders for the voice webhooks."""
from typing import Dict, Optional

VOICE = "Polly.Joanna-Neural"
TRANSFER_UNAVAILABLE_MESSAGE = (
    "I'm sorry, no one is available to take your call right now. Please call back later. Goodbye."
)


def escape_xml(text: str) -> str:
    """Escape XML special characters."""
    return (
        text.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
        .replace("'", "&apos;")
    )


def connect_stream_twiml(stream_url: str, parameters: Optional[Dict[str, str]] = None) -> str:
    """
    Open a bidirectional media stream.

    Args:
        stream_url: wss:// URL of the media stream endpoint
        parameters: custom parameters delivered in the stream's start message
    """
    params = "".join(
        f'\n            <Parameter name="{escape_xml(name)}" value="{escape_xml(value)}" />'
        for name, value in (parameters or {}).items()
        if value is not None
    )
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<Response>
    <Connect>
        <Stream url="{escape_xml(stream_url)}">{params}
        </Stream>
    </Connect>
</Response>"""


def gather_twiml(text: str, action_url: str) -> str:
    """
    Speak text, then collect the caller's speech.

    Args:
        text: Text to speak before gathering
        action_url: URL Twilio posts the SpeechResult to
    """
    safe_url = escape_xml(action_url)
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<Response>
    <Gather action="{safe_url}" method="POST" input="speech" speechTimeout="auto" language="en-US">
        <Say voice="{VOICE}">{escape_xml(text)}</Say>
    </Gather>
    <Say voice="{VOICE}">I didn't catch that. Please try again.</Say>
    <Redirect method="POST">{safe_url}</Redirect>
</Response>"""


def hangup_twiml(text: str) -> str:
    """Say goodbye and hang up."""
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<Response>
    <Say voice="{VOICE}">{escape_xml(text)}</Say>
    <Hangup/>
</Response>"""


def transfer_twiml(text: Optional[str], transfer_number: str) -> str:
    """Optionally say something, then dial the staff number."""
    say = f'\n    <Say voice="{VOICE}">{escape_xml(text)}</Say>' if text else ""
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<Response>{say}
    <Dial>{escape_xml(transfer_number)}</Dial>
</Response>"""
