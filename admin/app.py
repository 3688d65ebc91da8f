"""
BFC Map Generator - Admin Dashboard
Run with: streamlit run admin/app.py

Manages reference documents, EPCI, GeoJSON templates, shared links,
generation logs and the AI configuration stored in Supabase.
"""

import streamlit as st
import json
import os
import pandas as pd
from pathlib import Path
from datetime import datetime
import sys

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from supabase_client import get_supabase_client
from mapgen.stores import Stores
from mapgen.sharing import share_url, share_state
from mapgen.geodata import validate_feature_collection
from mapgen.context_builder import get_document_tags
from mapgen.settings import MISTRAL_API_KEY_NAME, MISTRAL_MODEL
from mapgen.constants import DEFAULT_SYSTEM_PROMPT

# Page config
st.set_page_config(
    page_title="BFC Map Admin",
    page_icon="",
    layout="wide"
)

PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "")


@st.cache_resource
def get_supabase():
    return get_supabase_client()


def parse_tags(text):
    """Comma separated tags, blanks dropped."""
    return [t.strip() for t in (text or "").split(",") if t.strip()]


def parse_geojson_text(text):
    """
    Parse GeoJSON typed in a text area.
    Returns (data, error); empty text gives (None, None).
    """
    if not text or not text.strip():
        return None, None
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        return None, f"Invalid JSON: {e}"
    if not isinstance(data, dict) or "type" not in data:
        return None, "GeoJSON must be an object with a 'type'"
    return data, None


def short(text, length=60):
    text = text or ""
    return text if len(text) <= length else text[:length] + "..."


def format_date(value):
    return (value or "")[:19].replace("T", " ")


# --- Main Dashboard ---

st.title("BFC Map Generator - Admin")
st.markdown("Documents, territoires, partages et journal des générations")

supabase_client = get_supabase()

if supabase_client is None:
    st.warning("""
    **Supabase not configured.**

    Add these environment variables to your `.env` file:
    ```
    SUPABASE_URL=https://your-project-id.supabase.co
    SUPABASE_SERVICE_KEY=your_service_role_key
    ```
    """)
    st.stop()

stores = Stores(supabase_client.client)

# Sidebar navigation
page = st.sidebar.radio(
    "Navigation",
    ["Overview", "Documents", "EPCI", "GeoJSON Templates", "Shared Links", "Generation Logs", "AI Config"]
)

# --- Overview Page ---
if page == "Overview":
    st.header("Overview")

    stats = supabase_client.get_generation_stats()
    status = supabase_client.test_connection()

    col1, col2, col3, col4, col5 = st.columns(5)

    with col1:
        st.metric("Generations", stats["total_generations"])

    with col2:
        st.metric("Success Rate", f"{stats['success_rate']:.1f}%")

    with col3:
        st.metric("Validated", stats["validated_generations"])

    with col4:
        st.metric("Shared Maps", stats["total_shares"])

    with col5:
        st.metric("Share Views", stats["total_views"])

    st.divider()

    st.subheader("Recent Errors")
    error_logs = supabase_client.get_error_logs(limit=20)
    if not error_logs:
        st.info("No errors logged. This is good!")
    else:
        for error in error_logs:
            with st.expander(f"{error.get('error_type', 'Error')} - {format_date(error.get('created_at'))}"):
                st.write(f"**Prompt:** {error.get('query') or 'N/A'}")
                st.write(f"**Error:** {error.get('error_message', 'N/A')}")
                if error.get("traceback"):
                    st.code(error.get("traceback"), language="python")

    with st.expander("Database Status"):
        if not status["connected"]:
            st.error(f"Failed to connect to Supabase: {status.get('error', 'Unknown error')}")
        else:
            for table, info in status.get("tables", {}).items():
                if info.get("exists"):
                    st.write(f"- {table}: {info.get('count', 0)} rows")
                else:
                    st.write(f"- {table}: NOT FOUND - {info.get('error', 'unknown')}")


# --- Documents Page ---
elif page == "Documents":
    st.header("Reference Documents")
    st.markdown("Active, processed documents are added to the generation context.")

    with st.expander("Upload a document", expanded=False):
        uploaded = st.file_uploader("File", type=["pdf", "txt", "csv", "json", "geojson", "docx", "xlsx"])
        name = st.text_input("Name")
        description = st.text_area("Description")
        usage_prompt = st.text_area("Usage prompt", help="How the model should use this document")
        tags_text = st.text_input("Tags (comma separated)")

        if st.button("Upload", disabled=uploaded is None or not name.strip()):
            content = uploaded.getvalue()
            path = f"{datetime.now().strftime('%Y%m%d_%H%M%S')}_{uploaded.name}"
            file_url = stores.documents.upload_file(path, content, uploaded.type)
            if file_url is None:
                st.error("Upload failed")
            else:
                row = stores.documents.insert({
                    "name": name.strip(),
                    "description": description.strip() or None,
                    "prompt": usage_prompt.strip() or None,
                    "metadata": {"tags": parse_tags(tags_text)},
                    "file_url": file_url,
                    "file_type": uploaded.type,
                    "file_size": len(content),
                    "is_active": True,
                    "embedding_processed": False,
                })
                if row:
                    st.success(f"Uploaded {name}")
                    st.rerun()
                else:
                    st.error("Document row could not be created")

    documents = stores.documents.list_all()

    if not documents:
        st.info("No documents yet.")
    else:
        df = pd.DataFrame([{
            "Name": doc.get("name"),
            "Active": doc.get("is_active"),
            "Processed": doc.get("embedding_processed"),
            "Tags": ", ".join(get_document_tags(doc)),
            "Created": format_date(doc.get("created_at")),
        } for doc in documents])
        st.dataframe(df, width="stretch", hide_index=True)

        for doc in documents:
            doc_id = doc["id"]
            with st.expander(doc.get("name") or doc_id):
                new_description = st.text_area("Description", doc.get("description") or "", key=f"desc_{doc_id}")
                new_prompt = st.text_area("Usage prompt", doc.get("prompt") or "", key=f"prompt_{doc_id}")
                new_tags = st.text_input("Tags", ", ".join(get_document_tags(doc)), key=f"tags_{doc_id}")
                if doc.get("file_url"):
                    st.write(f"**File:** {doc['file_url']}")

                col1, col2, col3, col4 = st.columns(4)

                with col1:
                    if st.button("Save", key=f"save_{doc_id}"):
                        metadata = dict(doc.get("metadata") or {})
                        metadata["tags"] = parse_tags(new_tags)
                        stores.documents.update(doc_id, {
                            "description": new_description.strip() or None,
                            "prompt": new_prompt.strip() or None,
                            "metadata": metadata,
                        })
                        st.rerun()

                with col2:
                    label = "Deactivate" if doc.get("is_active") else "Activate"
                    if st.button(label, key=f"active_{doc_id}"):
                        stores.documents.set_active(doc_id, not doc.get("is_active"))
                        st.rerun()

                with col3:
                    label = "Mark unprocessed" if doc.get("embedding_processed") else "Mark processed"
                    if st.button(label, key=f"processed_{doc_id}"):
                        stores.documents.mark_processed(doc_id, not doc.get("embedding_processed"))
                        st.rerun()

                with col4:
                    if st.button("Delete", key=f"delete_{doc_id}"):
                        st.session_state[f"confirm_delete_{doc_id}"] = True

                if st.session_state.get(f"confirm_delete_{doc_id}"):
                    st.warning("Delete permanently? Deactivating keeps the row for history.")
                    if st.button("Confirm delete", key=f"confirm_{doc_id}"):
                        stores.documents.delete(doc_id)
                        st.session_state[f"confirm_delete_{doc_id}"] = False
                        st.rerun()


# --- EPCI Page ---
elif page == "EPCI":
    st.header("EPCI")

    with st.expander("Add an EPCI", expanded=False):
        col1, col2 = st.columns(2)
        with col1:
            epci_name = st.text_input("Name")
            epci_code = st.text_input("SIREN code")
            population = st.number_input("Population", min_value=0, step=1)
        with col2:
            area = st.number_input("Area (km²)", min_value=0.0)
            geojson_url = st.text_input("GeoJSON URL (optional)")
        epci_description = st.text_area("Description")
        geojson_text = st.text_area("Inline GeoJSON (optional)", height=150)

        if st.button("Create EPCI", disabled=not epci_name.strip() or not epci_code.strip()):
            geojson_data, error = parse_geojson_text(geojson_text)
            if error:
                st.error(error)
            else:
                row = stores.epci.insert({
                    "name": epci_name.strip(),
                    "code": epci_code.strip(),
                    "description": epci_description.strip() or None,
                    "geojson_data": geojson_data,
                    "geojson_url": geojson_url.strip() or None,
                    "population": int(population) or None,
                    "area_km2": float(area) or None,
                    "is_active": True,
                })
                if row:
                    st.success(f"Created {epci_name}")
                    st.rerun()
                else:
                    st.error("EPCI could not be created (duplicate code?)")

    epci_rows = stores.epci.list_all()

    if not epci_rows:
        st.info("No EPCI yet.")
    else:
        df = pd.DataFrame([{
            "Code": row.get("code"),
            "Name": row.get("name"),
            "Population": row.get("population"),
            "Area (km²)": row.get("area_km2"),
            "Geometry": "inline" if row.get("geojson_data") else ("url" if row.get("geojson_url") else "none"),
            "Active": row.get("is_active"),
        } for row in epci_rows])
        st.dataframe(df, width="stretch", hide_index=True)

        for row in epci_rows:
            row_id = row["id"]
            with st.expander(f"{row.get('code')} - {row.get('name')}"):
                new_geojson = st.text_area(
                    "Inline GeoJSON",
                    json.dumps(row.get("geojson_data"), ensure_ascii=False) if row.get("geojson_data") else "",
                    key=f"geojson_{row_id}",
                    height=120,
                )
                new_url = st.text_input("GeoJSON URL", row.get("geojson_url") or "", key=f"url_{row_id}")

                col1, col2, col3 = st.columns(3)

                with col1:
                    if st.button("Save", key=f"save_{row_id}"):
                        geojson_data, error = parse_geojson_text(new_geojson)
                        if error:
                            st.error(error)
                        else:
                            stores.epci.update(row_id, {
                                "geojson_data": geojson_data,
                                "geojson_url": new_url.strip() or None,
                            })
                            st.rerun()

                with col2:
                    label = "Deactivate" if row.get("is_active") else "Activate"
                    if st.button(label, key=f"active_{row_id}"):
                        stores.epci.set_active(row_id, not row.get("is_active"))
                        st.rerun()

                with col3:
                    if st.button("Delete", key=f"delete_{row_id}"):
                        stores.epci.delete(row_id)
                        st.rerun()


# --- GeoJSON Templates Page ---
elif page == "GeoJSON Templates":
    st.header("GeoJSON Templates")

    with st.expander("Add a template", expanded=False):
        template_name = st.text_input("Name")
        template_description = st.text_area("Description")
        template_url = st.text_input("GeoJSON URL")
        style_text = st.text_area("Style config (JSON)", '{"color": "#3388ff", "weight": 2}')

        if st.button("Create template", disabled=not template_name.strip()):
            try:
                style_config = json.loads(style_text) if style_text.strip() else {}
            except json.JSONDecodeError as e:
                st.error(f"Invalid style JSON: {e}")
            else:
                stores.templates.insert({
                    "name": template_name.strip(),
                    "description": template_description.strip() or None,
                    "geojson_url": template_url.strip() or None,
                    "style_config": style_config,
                    "properties": {},
                    "is_active": True,
                })
                st.rerun()

    templates = stores.templates.list_all()

    if not templates:
        st.info("No templates yet.")
    else:
        for template in templates:
            template_id = template["id"]
            with st.expander(f"{template.get('name')} {'' if template.get('is_active') else '(inactive)'}"):
                st.write(f"**Description:** {template.get('description') or 'N/A'}")
                st.write(f"**URL:** {template.get('geojson_url') or 'N/A'}")
                st.json(template.get("style_config") or {})

                col1, col2 = st.columns(2)
                with col1:
                    label = "Deactivate" if template.get("is_active") else "Activate"
                    if st.button(label, key=f"active_{template_id}"):
                        stores.templates.set_active(template_id, not template.get("is_active"))
                        st.rerun()
                with col2:
                    if st.button("Delete", key=f"delete_{template_id}"):
                        stores.templates.delete(template_id)
                        st.rerun()


# --- Shared Links Page ---
elif page == "Shared Links":
    st.header("Shared Links")

    shares = stores.shared_maps.list_all()

    if not shares:
        st.info("No shared maps yet.")
    else:
        col1, col2, col3 = st.columns(3)
        with col1:
            st.metric("Shared Maps", len(shares))
        with col2:
            st.metric("Public", sum(1 for s in shares if s.get("is_public")))
        with col3:
            st.metric("Total Views", sum(s.get("view_count") or 0 for s in shares))

        df = pd.DataFrame([{
            "Title": share.get("title"),
            "State": share_state(share),
            "Views": share.get("view_count") or 0,
            "Created": format_date(share.get("created_at")),
        } for share in shares])
        st.dataframe(df, width="stretch", hide_index=True)

        for share in shares:
            share_id = share["id"]
            with st.expander(f"{share.get('title')} - {share_state(share)}"):
                st.code(share_url(share["share_token"], PUBLIC_BASE_URL), language=None)
                st.write(f"**Description:** {share.get('description') or 'N/A'}")
                st.write(f"**Views:** {share.get('view_count') or 0}")

                col1, col2 = st.columns(2)
                with col1:
                    label = "Unpublish" if share.get("is_public") else "Publish"
                    if st.button(label, key=f"public_{share_id}"):
                        stores.shared_maps.set_public(share_id, not share.get("is_public"))
                        st.rerun()
                with col2:
                    if st.button("Delete", key=f"delete_{share_id}"):
                        stores.shared_maps.delete(share_id)
                        st.rerun()


# --- Generation Logs Page ---
elif page == "Generation Logs":
    st.header("Generation Logs")

    col1, col2, col3 = st.columns(3)
    with col1:
        limit = st.selectbox("Show", [25, 50, 100, 200], index=0)
    with col2:
        validated_filter = st.selectbox("Validation", ["All", "To review", "Validated"])
    with col3:
        success_filter = st.selectbox("Result", ["All", "Success", "Failed"])

    validated = {"All": None, "To review": False, "Validated": True}[validated_filter]
    success = {"All": None, "Success": True, "Failed": False}[success_filter]
    logs = stores.generation_logs.list_logs(limit=limit, validated=validated, success=success)

    if not logs:
        st.info("No generations logged yet.")
    else:
        df = pd.DataFrame([{
            "Created": format_date(log.get("created_at")),
            "Prompt": short(log.get("user_prompt")),
            "Success": log.get("success"),
            "Model": log.get("model_name"),
            "Time (ms)": log.get("execution_time_ms"),
            "Validated": log.get("is_validated"),
        } for log in logs])
        st.dataframe(df, width="stretch", hide_index=True)

        if st.button("Export to CSV"):
            st.download_button(
                "Download CSV",
                df.to_csv(index=False),
                file_name=f"generation_logs_{datetime.now().strftime('%Y%m%d_%H%M%S')}.csv",
                mime="text/csv"
            )

        for log in logs:
            log_id = log["id"]
            marker = "OK" if log.get("success") else "FAILED"
            with st.expander(f"[{marker}] {short(log.get('user_prompt'), 80)} - {format_date(log.get('created_at'))}"):
                if log.get("error_message"):
                    st.error(log["error_message"])

                tab1, tab2, tab3 = st.tabs(["Parsed response", "Raw response", "System prompt"])
                with tab1:
                    st.json(log.get("ai_response") or {})
                with tab2:
                    st.code(log.get("raw_ai_response") or "", language="json")
                with tab3:
                    st.text(log.get("system_prompt") or "")

                st.divider()
                notes = st.text_area("Validation notes", log.get("validation_notes") or "", key=f"notes_{log_id}")
                corrected_text = st.text_area(
                    "Corrected GeoJSON (optional)",
                    json.dumps(log["corrected_geojson"], ensure_ascii=False) if log.get("corrected_geojson") else "",
                    key=f"corrected_{log_id}",
                    height=120,
                )

                col1, col2, col3 = st.columns(3)
                with col1:
                    if st.button("Validate", key=f"validate_{log_id}"):
                        corrected, error = parse_geojson_text(corrected_text)
                        if not error and corrected is not None:
                            valid, reason = validate_feature_collection(corrected)
                            error = None if valid else reason
                        if error:
                            st.error(error)
                        else:
                            stores.generation_logs.validate(log_id, notes.strip() or None, corrected)
                            st.rerun()
                with col2:
                    if log.get("is_validated") and st.button("Reopen", key=f"reopen_{log_id}"):
                        stores.generation_logs.validate(log_id, log.get("validation_notes"),
                                                        log.get("corrected_geojson"), is_validated=False)
                        st.rerun()
                with col3:
                    if st.button("Delete", key=f"delete_{log_id}"):
                        stores.generation_logs.delete(log_id)
                        st.rerun()


# --- AI Config Page ---
elif page == "AI Config":
    st.header("AI Configuration")
    st.markdown(f"Without an active configuration, `{MISTRAL_MODEL}` and `{MISTRAL_API_KEY_NAME}` are used.")

    active = stores.ai_config.get_active()
    if active:
        st.success(f"Active model: {active.get('model_name')}")
    else:
        st.info("No active configuration")

    with st.expander("New configuration", expanded=active is None):
        model_name = st.text_input("Model", MISTRAL_MODEL)
        api_key_name = st.text_input("API key environment variable", MISTRAL_API_KEY_NAME)
        system_prompt = st.text_area("System prompt", DEFAULT_SYSTEM_PROMPT, height=200)
        make_active = st.checkbox("Activate", value=True)

        if st.button("Save configuration", disabled=not model_name.strip()):
            row = stores.ai_config.insert({
                "model_name": model_name.strip(),
                "api_key_name": api_key_name.strip() or MISTRAL_API_KEY_NAME,
                "system_prompt": system_prompt.strip() or None,
                "is_active": False,
            })
            if row and make_active:
                stores.ai_config.activate(row["id"])
            st.rerun()

    configs = stores.ai_config.list_all()
    for config in configs:
        config_id = config["id"]
        label = "(active)" if config.get("is_active") else ""
        with st.expander(f"{config.get('model_name')} {label} - {format_date(config.get('created_at'))}"):
            st.write(f"**API key variable:** {config.get('api_key_name')}")
            st.text(config.get("system_prompt") or "")
            if not config.get("is_active") and st.button("Activate", key=f"activate_{config_id}"):
                stores.ai_config.activate(config_id)
                st.rerun()
