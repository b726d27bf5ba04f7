"""
Local stand-in answers used when no model credential is configured.

The text is streamed word by word through the same framer as a real
answer, so clients see an identical event shape either way.
"""

import asyncio
from typing import AsyncIterator, List, Optional


ANALYSIS_TEMPLATE = """# Prescription Analysis

## File Information
- **Filename**: {filename}
- **File Type**: {file_type}
- **File Size**: {size_kb} KB

## Analysis Results
This appears to be a prescription document. To get a detailed analysis, please ensure the OPENAI_API_KEY environment variable is properly configured.

## Medications Detected
- Sample medication information would appear here
- Dosage instructions would be analyzed
- Potential interactions would be identified

## Important Notes
- This is a demo response
- Please configure your API key for full functionality
- Always consult with healthcare professionals for medical advice

## Next Steps
1. Set up your OPENAI_API_KEY in .env
2. Upload your prescription again
3. Get detailed AI analysis"""

CHAT_TEMPLATE = """# Assistant Unavailable

## Conversation
- **Thread**: {thread_id}
- **Previous Messages**: {history_count}
- **Prescription Context**: {has_context}

The AI assistant is running in demo mode. To get real answers, please ensure the OPENAI_API_KEY environment variable is properly configured.

Always consult with healthcare professionals for medical advice."""


def format_kb(size: int) -> str:
    return f"{size / 1024:.2f}"


def analysis_fallback_text(filename: str, file_type: str, size: int) -> str:
    return ANALYSIS_TEMPLATE.format(filename=filename, file_type=file_type, size_kb=format_kb(size))


def chat_fallback_text(thread_id: str, history_count: int = 0, has_context: bool = False) -> str:
    return CHAT_TEMPLATE.format(
        thread_id=thread_id,
        history_count=history_count,
        has_context="yes" if has_context else "no",
    )


def split_words(text: str) -> List[str]:
    """Split on single spaces, keeping separators so the parts rejoin exactly."""
    words = text.split(" ")
    return [w + " " for w in words[:-1]] + [words[-1]]


async def fallback_fragments(text: str, delay: Optional[float] = 0.05) -> AsyncIterator[str]:
    for i, part in enumerate(split_words(text)):
        if i and delay:
            await asyncio.sleep(delay)
        if part:
            yield part
