"""Static reply tables and canned messages for routing."""

# Canonical greetings and acknowledgements answered without any backend
QUICK_REPLIES = {
    "hello": "Hello, I'm here to help. What can I do for you?",
    "hi": "Hi, I'm here to help. What can I do for you?",
    "hey": "Hi, I'm here to help. What can I do for you?",
    "good morning": "Good morning. How can I help you today?",
    "good afternoon": "Good afternoon. How can I help you today?",
    "good evening": "Good evening. How can I help you today?",
    "thanks": "You're welcome. Is there anything else I can help with?",
    "thank you": "You're welcome. Is there anything else I can help with?",
    "thank you so much": "You're very welcome. Is there anything else I can help with?",
    "ok": "Okay. What else can I help you with?",
    "okay": "Okay. What else can I help you with?",
    "got it": "Great. Is there anything else you need?",
}

# Whole utterances that end the call, once filler words are stripped
FAREWELL_PHRASES = [
    "goodbye",
    "good bye",
    "bye",
    "bye bye",
    "that's all",
    "that is all",
    "that's it",
    "hang up",
    "end the call",
    "i'm done",
    "i am done",
    "no more questions",
]

# Words allowed around a farewell phrase ("okay thanks bye", "that's all for now")
FAREWELL_FILLER = [
    "ok",
    "okay",
    "alright",
    "all right",
    "well",
    "so",
    "great",
    "thanks",
    "thank you",
    "thank you so much",
    "then",
    "now",
    "for now",
    "bye",
]

FAREWELL_MESSAGE = (
    "Thank you for calling. Please stay safe, and remember you can call back "
    "any time. Goodbye."
)

# Confirmation replies to "are you still looking in <place>?"
AFFIRMATIVE_INDICATORS = ["yes", "yeah", "yep", "correct", "right", "sure", "same", "still"]
NEGATIVE_INDICATORS = ["no", "nope", "not", "different", "somewhere else", "another"]

ASK_LOCATION_MESSAGE = "I can help with that. What city or area are you in?"
CONFIRM_LOCATION_MESSAGE = "Are you still looking in {location}?"

SYSTEM_PROMPT = (
    "You are a voice assistant for a domestic violence support line. Be kind, "
    "empathetic and non-judgmental. Prioritize the caller's safety and privacy. "
    "If the caller mentions immediate danger, weapons, or self-harm, tell them "
    "to call 911 right away. Keep answers short and easy to follow when spoken "
    "aloud, two or three sentences at most."
)

SEARCH_CONTEXT_PROMPT = (
    "Use the following search snippets if they are relevant. Do not invent "
    "phone numbers or addresses that are not in the snippets.\n\n{snippets}"
)

FALLBACK_MESSAGE = (
    "I'm sorry, I'm having trouble finding that right now. Please call the "
    "National Domestic Violence Hotline at {hotline} for immediate support."
)
