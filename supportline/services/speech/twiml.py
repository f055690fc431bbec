"""TwiML rendering for spoken answers."""

VOICE = "Polly.Joanna-Neural"


def escape_xml(text: str) -> str:
    """Escape XML special characters."""
    return (
        text.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
        .replace("'", "&apos;")
    )


def say_and_gather(text: str, action_url: str) -> str:
    """
    Speak ``text`` and gather the caller's next utterance.

    Args:
        text: Text to speak before gathering
        action_url: URL Twilio posts the recognized speech to

    Returns:
        TwiML XML string
    """
    action = escape_xml(action_url)
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<Response>
    <Gather action="{action}" method="POST" input="speech" speechTimeout="auto" speechModel="phone_call" language="en-US">
        <Say voice="{VOICE}">{escape_xml(text)}</Say>
    </Gather>
    <Say voice="{VOICE}">Are you still there? I'm here whenever you're ready.</Say>
    <Redirect method="POST">{action}</Redirect>
</Response>"""


def say_and_hangup(text: str) -> str:
    """Speak ``text`` and end the call."""
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<Response>
    <Say voice="{VOICE}">{escape_xml(text)}</Say>
    <Hangup/>
</Response>"""


def message(text: str) -> str:
    """Reply to an inbound text message."""
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<Response>
    <Message>{escape_xml(text)}</Message>
</Response>"""
