"""
Audio duration utilities.
"""

import soundfile as sf


def get_audio_duration(path: str) -> float:
    """
    Measure the duration of an audio file.

    Args:
        path: Path to audio file

    Returns:
        Duration in seconds
    """
    info = sf.info(path)
    if info.samplerate <= 0:
        return 0.0
    return info.frames / info.samplerate


def estimate_voice_duration(
    text: str,
    words_per_second: float = 2.5,
    padding: float = 1.0,
    min_duration: float = 1.0,
) -> float:
    """
    Estimate how long a script line takes to speak.

    Used for layout before the line has been generated.

    Args:
        text: Script text
        words_per_second: Speaking rate (~150 wpm)
        padding: Seconds added for natural pauses
        min_duration: Lower bound

    Returns:
        Estimated duration in seconds
    """
    words = len(text.split())
    return max(min_duration, words / words_per_second + padding)
