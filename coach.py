"""Request/response calls to the Gemini text models: challenges, grading, review, chat."""

from __future__ import annotations

import base64
import json
import logging
import mimetypes
import uuid
from pathlib import Path
from typing import Any, Optional, Sequence

from google import genai
from google.genai import types

from config import DEFAULT_TEXT_MODEL
from models import Challenge, ChatMode, ChatReply, Difficulty, SubmissionResult

logger = logging.getLogger(__name__)

FAST_MODEL = "gemini-2.5-flash-lite"
SEARCH_MODEL = "gemini-2.5-flash"
TRANSCRIBE_MODEL = "gemini-2.5-flash"
IMAGE_MODEL = "gemini-2.5-flash-image"
THINKING_BUDGET = 32768
MAX_CHAT_CHARS = 2000

CHALLENGE_SCHEMA = types.Schema(
    type=types.Type.OBJECT,
    properties={
        "title": types.Schema(type=types.Type.STRING),
        "description": types.Schema(type=types.Type.STRING),
        "difficulty": types.Schema(type=types.Type.STRING),
        "category": types.Schema(type=types.Type.STRING),
        "starterCode": types.Schema(type=types.Type.STRING),
        "requirements": types.Schema(
            type=types.Type.ARRAY, items=types.Schema(type=types.Type.STRING)
        ),
    },
    required=["title", "description", "difficulty", "starterCode", "requirements"],
)

SUBMISSION_SCHEMA = types.Schema(
    type=types.Type.OBJECT,
    properties={
        "success": types.Schema(type=types.Type.BOOLEAN),
        "status": types.Schema(
            type=types.Type.STRING, enum=["Correct", "Incorrect", "Syntax Error"]
        ),
        "mistakes": types.Schema(
            type=types.Type.ARRAY, items=types.Schema(type=types.Type.STRING)
        ),
        "feedback": types.Schema(type=types.Type.STRING),
    },
    required=["success", "status", "mistakes", "feedback"],
)

_CHAT_INSTRUCTIONS = {
    ChatMode.DEFAULT: "You are a senior software engineer mentor skilled in multiple languages. "
    "Help the user solve coding problems, explain concepts, and debug code.",
    ChatMode.FAST: "You are a helpful coding assistant. Provide brief, concise, and fast answers.",
    ChatMode.THINKING: "You are a deep reasoning AI. Think carefully about the user's complex "
    "query before answering.",
    ChatMode.SEARCH: "You are a helpful assistant with access to Google Search. Use it to "
    "provide up-to-date information.",
}


class CoachService:
    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_TEXT_MODEL,
        client: Any = None,
    ) -> None:
        self._model = model
        self._client = client if client is not None else genai.Client(api_key=api_key)

    def generate_challenge(
        self,
        difficulty: Difficulty,
        topic: str,
        language: str,
    ) -> Challenge:
        learning = difficulty == Difficulty.LEARNING
        prompt = (
            f"Create a {'fundamental textbook exercise' if learning else 'challenging coding problem'} "
            f"in {language} about \"{topic}\" at {difficulty.value} level.\n"
            "Give a problem statement and a list of concrete technical requirements. "
            "Do not provide the solution. 'starterCode' must contain only empty boilerplate."
        )
        response = self._client.models.generate_content(
            model=self._model,
            contents=prompt,
            config=types.GenerateContentConfig(
                response_mime_type="application/json",
                response_schema=CHALLENGE_SCHEMA,
            ),
        )
        if not response.text:
            raise RuntimeError("No data returned")
        data = json.loads(response.text)
        return Challenge(
            id=uuid.uuid4().hex,
            title=data["title"],
            description=data["description"],
            difficulty=data.get("difficulty", difficulty.value),
            category=data.get("category", topic),
            language=language,
            starter_code=data["starterCode"],
            requirements=list(data.get("requirements", [])),
        )

    def submit_solution(self, code: str, challenge: Challenge) -> SubmissionResult:
        prompt = (
            "Act as a strict unit test runner and code grader.\n"
            f"Title: {challenge.title}\n"
            f"Description: {challenge.description}\n"
            f"Constraints: {', '.join(challenge.requirements)}\n"
            f"Language: {challenge.language}\n\n"
            f"User submission:\n```{challenge.language}\n{code}\n```\n"
            "Set success true only if the code is fully correct and meets every constraint."
        )
        try:
            response = self._client.models.generate_content(
                model=self._model,
                contents=prompt,
                config=types.GenerateContentConfig(
                    response_mime_type="application/json",
                    response_schema=SUBMISSION_SCHEMA,
                ),
            )
            if not response.text:
                raise RuntimeError("No data returned from grading")
            data = json.loads(response.text)
            return SubmissionResult(
                success=bool(data["success"]),
                status=str(data["status"]),
                mistakes=list(data.get("mistakes", [])),
                feedback=str(data.get("feedback", "")),
            )
        except Exception:
            logger.exception("grading failed")
            return SubmissionResult(
                success=False,
                status="Incorrect",
                mistakes=["System error during grading. Please try again."],
                feedback="Could not grade submission.",
            )

    def review_code(self, code: str, challenge: Challenge) -> str:
        prompt = (
            f"Review this {challenge.language} solution for \"{challenge.title}\".\n"
            f"Description: {challenge.description}\n"
            "Requirements:\n" + "\n".join(challenge.requirements) + "\n\n"
            f"```{challenge.language}\n{code}\n```\n"
            "Cover logic, time and space complexity, idiomatic language use, "
            "optimization hints without a full solution, and readability."
        )
        try:
            response = self._client.models.generate_content(model=self._model, contents=prompt)
        except Exception:
            logger.exception("code review failed")
            return "Error generating review. Please try again."
        return response.text or "Could not generate review."

    def chat(
        self,
        message: str,
        history: Optional[Sequence[dict]] = None,
        mode: ChatMode = ChatMode.DEFAULT,
    ) -> ChatReply:
        model = self._model
        config = types.GenerateContentConfig(system_instruction=_CHAT_INSTRUCTIONS[mode])
        if mode == ChatMode.FAST:
            model = FAST_MODEL
        elif mode == ChatMode.THINKING:
            config.thinking_config = types.ThinkingConfig(thinking_budget=THINKING_BUDGET)
        elif mode == ChatMode.SEARCH:
            model = SEARCH_MODEL
            config.tools = [types.Tool(google_search=types.GoogleSearch())]
        try:
            chat = self._client.chats.create(model=model, config=config, history=list(history or []))
            response = chat.send_message(message)
        except Exception:
            logger.exception("chat request failed")
            return ChatReply(text="I'm having trouble connecting right now. Please try again.")
        grounding = None
        if response.candidates:
            grounding = response.candidates[0].grounding_metadata
        return ChatReply(text=response.text or "", grounding_metadata=grounding)

    def transcribe_audio(self, audio_base64: str, mime_type: str = "audio/wav") -> str:
        try:
            response = self._client.models.generate_content(
                model=TRANSCRIBE_MODEL,
                contents=[
                    _inline_part(audio_base64, mime_type),
                    "Transcribe the spoken language in this audio into text. "
                    "Return only the transcription.",
                ],
            )
        except Exception:
            logger.exception("transcription failed")
            return ""
        return response.text or ""

    def edit_image(self, image_base64: str, prompt: str, mime_type: str = "image/png") -> Optional[str]:
        """Return the edited image as base64, or None when the model sent no image."""
        try:
            response = self._client.models.generate_content(
                model=IMAGE_MODEL,
                contents=[_inline_part(image_base64, mime_type), prompt],
            )
        except Exception:
            logger.exception("image edit failed")
            return None
        for candidate in response.candidates or []:
            content = candidate.content
            for part in (content.parts if content else None) or []:
                if part.inline_data and part.inline_data.data:
                    data = part.inline_data.data
                    if isinstance(data, bytes):
                        return base64.b64encode(data).decode("ascii")
                    return data
        return None


def _inline_part(data_base64: str, mime_type: str) -> types.Part:
    return types.Part.from_bytes(data=base64.b64decode(data_base64), mime_type=mime_type)


def grounding_links(metadata: Any) -> list[tuple[str, str]]:
    """(title, uri) for every web source in a search-grounded reply."""
    chunks = getattr(metadata, "grounding_chunks", None)
    if chunks is None and isinstance(metadata, dict):
        chunks = metadata.get("groundingChunks") or metadata.get("grounding_chunks")
    links = []
    for chunk in chunks or []:
        web = chunk.get("web") if isinstance(chunk, dict) else getattr(chunk, "web", None)
        if web is None:
            continue
        uri = web.get("uri") if isinstance(web, dict) else getattr(web, "uri", None)
        title = web.get("title") if isinstance(web, dict) else getattr(web, "title", None)
        if uri:
            links.append((title or uri, uri))
    return links


class ChatSession:
    """Multi-turn chat with the coach; history is replayed on every request."""

    def __init__(self, service: CoachService) -> None:
        self._service = service
        self.history: list[dict] = []

    def ask(self, message: str, mode: ChatMode = ChatMode.DEFAULT) -> ChatReply:
        message = message.strip()[:MAX_CHAT_CHARS]
        reply = self._service.chat(message, history=self.history, mode=mode)
        self.history.append({"role": "user", "parts": [{"text": message}]})
        self.history.append({"role": "model", "parts": [{"text": reply.text}]})
        return reply

    def clear(self) -> None:
        self.history = []


def edit_image_file(service: CoachService, path: Path, prompt: str) -> Optional[Path]:
    """Edit the image at ``path`` and write the result beside it as ``<stem>_edited.png``."""
    mime_type = mimetypes.guess_type(path.name)[0] or "image/png"
    data = base64.b64encode(path.read_bytes()).decode("ascii")
    result = service.edit_image(data, prompt, mime_type)
    if result is None:
        return None
    target = path.with_name(f"{path.stem}_edited.png")
    target.write_bytes(base64.b64decode(result))
    logger.info("edited image written to %s", target)
    return target
