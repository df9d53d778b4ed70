from __future__ import annotations

from datetime import date, datetime, time

import streamlit as st

from convenio.client import ApiClient, jwt_is_expired, jwt_payload
from convenio.config import API_BASE
from convenio.errors import AuthenticationError, ConvenioError

st.set_page_config(page_title="Cartão Convênio", layout="wide")

ROLE_LABELS = {"client": "Cliente", "professional": "Profissional", "admin": "Administrador"}


def api(token: str | None = None) -> ApiClient:
    return ApiClient(API_BASE, token=token)


def is_logged_in() -> bool:
    token = st.session_state.get("token")
    return bool(token) and isinstance(token, str) and not jwt_is_expired(token)


def do_logout() -> None:
    for key in ("token", "pending", "auth_error"):
        st.session_state.pop(key, None)
    st.rerun()


def current_role() -> str | None:
    token = st.session_state.get("token")
    return jwt_payload(token).get("currentRole") if token else None


def show_error(e: Exception) -> None:
    if isinstance(e, AuthenticationError):
        st.session_state["auth_error"] = str(e)
        st.error("Sessão inválida. Faça logout e entre novamente.")
    else:
        st.error(str(e))


# Sidebar login

with st.sidebar:
    st.header("Acesso")

    pending = st.session_state.get("pending")

    if is_logged_in():
        payload = jwt_payload(st.session_state["token"])
        roles = payload.get("roles") or []
        st.write(f"Perfil ativo: **{ROLE_LABELS.get(current_role(), current_role())}**")

        if len(roles) > 1:
            other = st.selectbox("Trocar perfil", options=roles, index=roles.index(current_role()),
                                 format_func=lambda r: ROLE_LABELS.get(r, r), key="switch_role")
            if other != current_role() and st.button("Trocar", key="switch_btn"):
                try:
                    data = api(st.session_state["token"]).switch_role(other)
                    st.session_state["token"] = data["token"]
                    st.rerun()
                except ConvenioError as e:
                    show_error(e)

        if st.session_state.get("auth_error"):
            st.error(st.session_state["auth_error"])

        if st.button("Logout", key="logout_btn"):
            do_logout()

    elif pending:
        st.write(f"Olá, **{pending['user']['name']}**. Escolha o perfil:")
        role = st.radio("Perfil", options=pending["user"]["roles"],
                        format_func=lambda r: ROLE_LABELS.get(r, r), key="select_role")
        if st.button("Entrar", key="select_btn"):
            try:
                data = api(pending["selection_token"]).select_role(pending["user"]["id"], role)
                st.session_state["token"] = data["token"]
                st.session_state.pop("pending", None)
                st.rerun()
            except ConvenioError as e:
                show_error(e)

    else:
        cpf = st.text_input("CPF", key="login_cpf")
        password = st.text_input("Senha", type="password", key="login_pass")

        if st.button("Login", key="login_btn"):
            try:
                data = api().login(cpf.strip(), password)
                if data.get("needs_role_selection"):
                    st.session_state["pending"] = data
                else:
                    st.session_state["token"] = data["token"]
                st.rerun()
            except ConvenioError as e:
                st.error(e.message)

    st.divider()
    st.caption(f"API: {API_BASE}")


# UI

st.title("Cartão Convênio")

if not is_logged_in():
    st.info("Faça login pela barra lateral.")
    st.stop()

token = st.session_state["token"]
client = api(token)
role = current_role()


# PROFISSIONAL

if role == "professional":
    tab1, tab2 = st.tabs(["Agenda", "Consultas recorrentes"])

    with tab1:
        dia = st.date_input("Dia", value=date.today(), key="agenda_dia")
        try:
            items = client.get("/api/consultations/agenda", params={"date": dia.isoformat()})
            if not items:
                st.info("Nenhuma consulta para este dia.")
            for c in items:
                hora = datetime.fromisoformat(c["local_date"]).strftime("%H:%M")
                st.write(
                    f"- **{hora}** | {c['client_name']} ({c['patient_type']}) | {c['service_name']} | "
                    f"R$ {c['value']:.2f} | {c['status']} | {c['location_name'] or '-'}"
                )
        except ConvenioError as e:
            show_error(e)

    with tab2:
        try:
            services = client.get("/api/services")
            patients = client.get("/api/private-patients")
            locations = client.get("/api/attendance-locations")
        except ConvenioError as e:
            show_error(e)
            st.stop()

        c1, c2, c3 = st.columns(3)
        with c1:
            patient = st.selectbox("Paciente particular", options=patients,
                                   format_func=lambda p: p["name"], key="rec_patient")
            service = st.selectbox("Serviço", options=services,
                                   format_func=lambda s: f"{s['name']} (R$ {s['base_price']:.2f})", key="rec_service")
            location = st.selectbox("Local", options=[None] + locations,
                                    format_func=lambda loc: loc["name"] if loc else "-", key="rec_location")
        with c2:
            start_date = st.date_input("Data inicial", value=date.today(), key="rec_start")
            start_time = st.time_input("Horário", value=time(9, 0), key="rec_time")
            rtype = st.selectbox("Repetir", options=["daily", "weekly", "monthly"], index=1, key="rec_type")
        with c3:
            interval = st.number_input("A cada", min_value=1, value=1, step=1, key="rec_interval")
            occurrences = st.number_input("Ocorrências", min_value=1, max_value=100, value=10, key="rec_occ")
            end_date = st.date_input("Data final (opcional)", value=None, key="rec_end")

        notes = st.text_area("Observações", key="rec_notes")

        if st.button("Criar consultas", key="rec_submit", disabled=not (patient and service)):
            payload = {
                "private_patient_id": patient["id"],
                "service_id": service["id"],
                "value": service["base_price"],
                "location_id": location["id"] if location else None,
                "start_date": start_date.isoformat(),
                "start_time": start_time.strftime("%H:%M"),
                "recurrence_type": rtype,
                "recurrence_interval": int(interval),
                "occurrences": int(occurrences),
                "end_date": end_date.isoformat() if end_date else None,
                "notes": notes or None,
            }
            try:
                res = client.post("/api/consultations/recurring", payload)
                st.success(res["message"])
                if res.get("first_error"):
                    st.warning(f"Primeira falha: {res['first_error']['message']}")
            except ConvenioError as e:
                show_error(e)


# CLIENTE

elif role == "client":
    user_id = int(jwt_payload(token)["sub"])
    tab1, tab2 = st.tabs(["Minhas consultas", "Dependentes"])

    with tab1:
        try:
            for c in client.get(f"/api/consultations/client/{user_id}"):
                quando = datetime.fromisoformat(c["local_date"]).strftime("%d/%m/%Y %H:%M")
                st.write(f"- **{quando}** | {c['client_name']} | {c['service_name']} | {c['status']}")
        except ConvenioError as e:
            show_error(e)

    with tab2:
        try:
            for d in client.get(f"/api/dependents/{user_id}"):
                st.write(f"- {d['name']} | CPF {d['cpf']} | assinatura: {d['subscription_status']}")
        except ConvenioError as e:
            show_error(e)


# ADMIN

else:
    tab1, tab2 = st.tabs(["Consultas", "Auditoria"])

    with tab1:
        try:
            for c in client.get("/api/consultations"):
                quando = datetime.fromisoformat(c["local_date"]).strftime("%d/%m/%Y %H:%M")
                st.write(f"- {quando} | {c['client_name']} | {c['service_name']} | {c['status']}")
        except ConvenioError as e:
            show_error(e)

    with tab2:
        try:
            logs = client.get("/api/audit-logs", params={"limit": 100})
            for log in logs["logs"]:
                st.write(f"- {log['created_at']} | user {log['user_id']} | {log['action']} | {log['new_values'] or ''}")
        except ConvenioError as e:
            show_error(e)
