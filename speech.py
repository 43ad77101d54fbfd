import io
import logging

from gtts import gTTS

logger = logging.getLogger(__name__)


class SpeechError(Exception):
    pass


def tts_to_bytes(text: str, language: str = "en") -> bytes:
    """
    Generate MP3 audio for given text and return it as bytes.
    """
    buf = io.BytesIO()
    try:
        tts = gTTS(text=text, lang=language or "en")
        tts.write_to_fp(buf)
    except Exception as e:
        raise SpeechError(f"TTS error: {e}") from e
    buf.seek(0)
    logger.debug("Synthesised %d chars of %s speech", len(text), language)
    return buf.read()
