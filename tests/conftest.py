import dataclasses
import io
import json

import fitz
import pytest
from PIL import Image

from prompts.menu_types import OcrPage
from utils.llm_client import LlmResponse
from utils.settings import Settings


@pytest.fixture
def settings(tmp_path):
    # low DPI keeps rendered test pages small
    return dataclasses.replace(Settings(), output_dir=str(tmp_path), ocr_pdf_dpi=72)


@pytest.fixture
def make_pdf():
    def _make(*page_texts):
        doc = fitz.open()
        for text in page_texts:
            page = doc.new_page()
            if text:
                page.insert_text((72, 72), text, fontsize=11)
        data = doc.tobytes()
        doc.close()
        return data
    return _make


@pytest.fixture
def png_bytes():
    buf = io.BytesIO()
    Image.new("RGB", (320, 120), "white").save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def page():
    def _page(text, file_id="f1", file_name="menu.pdf", number=1):
        return OcrPage(file_id=file_id, file_name=file_name, page_number=number, raw_text=text)
    return _page


@pytest.fixture
def stub_llm():
    """Invoker that replays queued responses and records every prompt."""
    class StubLlm:
        def __init__(self):
            self.prompts = []
            self.queue = []

        def reply(self, payload, truncated=False):
            text = payload if isinstance(payload, str) else json.dumps(payload)
            self.queue.append(LlmResponse(text=text, truncated=truncated))
            return self

        def fail(self, exc):
            self.queue.append(exc)
            return self

        def __call__(self, prompt):
            self.prompts.append(prompt)
            item = self.queue.pop(0)
            if isinstance(item, BaseException):
                raise item
            return item

    return StubLlm()
