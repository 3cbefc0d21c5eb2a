import streamlit as st

# CSS styles for the clinic menu admin page
STYLE_CSS = """
<style>
/* ---------------------------------------------- */
/* Palette:
   • Clinic Teal   = #0F6E78
   • Sky           = #7FD1D8
   • Mist          = #E6F5F6
   • Paper         = #F7FBFB
   • Slate         = #33414A
/* ---------------------------------------------- */

body {
  background-color: #F7FBFB;   /* Paper */
  font-family: 'Segoe UI', Tahoma, Geneva, Verdana, sans-serif;
}

h1 {
  font-size: 2.6rem;
  color: #0F6E78;   /* Clinic Teal */
  text-align: center;
  margin-bottom: 0.75rem;
}
h2, h3, h4 {
  color: #33414A;   /* Slate */
}
p, label {
  color: #33414A;
}

/* Metric tiles for the batch summary */
[data-testid="stMetric"] {
  background-color: #E6F5F6;   /* Mist */
  border-left: 4px solid #0F6E78;
  border-radius: 6px;
  padding: 0.6rem 0.9rem;
}
[data-testid="stMetricValue"] {
  color: #0F6E78;
}

/* Primary actions: run OCR, download CSV, forward to importer */
.stButton > button, .stDownloadButton > button {
  background-color: #0F6E78 !important;
  color: #FFFFFF !important;
  border-radius: 4px;
  border: none;
  font-weight: 600;
}
.stButton > button:hover, .stDownloadButton > button:hover {
  background-color: #0B5860 !important;
}

/* File uploader drop zone */
[data-testid="stFileUploaderDropzone"] {
  border: 2px dashed #7FD1D8 !important;   /* Sky */
  background-color: #FFFFFF;
}

/* Package table header */
.stDataFrame thead th {
  background-color: #E6F5F6 !important;
  color: #33414A !important;
}

/* Raw OCR text preview */
.stCodeBlock pre {
  background-color: #E6F5F6 !important;
  color: #33414A !important;
  border-radius: 4px;
}

/* Low-confidence / warning callouts */
.stAlert.warning {
  background-color: #FFF4D6 !important;
  color: #33414A !important;
  border-radius: 4px;
}
.stAlert.error {
  background-color: #F9D9D4 !important;
  color: #33414A !important;
  border-radius: 4px;
}
</style>
"""

def inject_css():
    """
    Inject the admin page CSS.
    """
    st.markdown(STYLE_CSS, unsafe_allow_html=True)
