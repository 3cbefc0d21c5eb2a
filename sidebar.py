import streamlit as st

from utils.settings import get_settings

SIDEBAR_MD = """
### 🏥 Clinic Menu OCR

Turn clinic and hospital price menus into bulk-import package rows.

- 📄 Upload PDFs, photos (JPG / PNG) or iPhone HEIC shots of a menu
- 🔤 Text is read from the PDF text layer, or by Tesseract OCR for scans and photos
- 🤖 One AI call per file splits the menu into packages at each price
- 🩺 Hospital and treatment names are matched against the catalogue
- ✏️ Review low-confidence rows, edit, then download or forward the CSV

**Row status:**

- **Valid**: all required fields present, no warnings
- **Warnings**: importable, but something needs a human look
- **Invalid**: missing title, hospital, treatment, price or currency
"""


def render_sidebar():
    """
    Render the sidebar: what the tool does plus the active OCR/LLM settings.
    """
    settings = get_settings()
    st.sidebar.markdown("# Clinic Menu OCR")
    st.sidebar.markdown(SIDEBAR_MD, unsafe_allow_html=True)
    st.sidebar.markdown("---")
    st.sidebar.caption(
        f"OCR languages: `{settings.ocr_langs}` · PSM {settings.ocr_psm} · "
        f"max {settings.ocr_max_file_mb} MB per file"
    )
    model = settings.bedrock_model_id if settings.llm_provider == "bedrock" else settings.openai_model
    st.sidebar.caption(f"LLM: `{settings.llm_provider}` · `{model}`")
