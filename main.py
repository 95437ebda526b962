import logging
import os
import threading
from typing import Dict, List, Optional

from fastapi import Depends, FastAPI, File, Header, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ai_client import GenerativeClient
from board import BoardError, PipelineBoard
from config import IDENTITY_CONFIG_MISSING, ConfigurationError, Settings
from database import Base, make_engine, make_session_factory
from dictation import TARGETS, DictationBusyError
from editor import AccountEditor, AccountValidationError, validate_form
from identity import AuthClient, IdentityProvider
from importer import read_accounts_csv
from schemas import (
    AccountFormPatch,
    AccountResponse,
    AuthResponse,
    BoardResponse,
    DictationState,
    EditorResponse,
    ImportResponse,
    NoteCreate,
    NoteEdit,
    OpenEditorRequest,
    PipelineMetricsResponse,
    RecognitionError,
    RecognitionEvent,
    SessionResponse,
    SignInRequest,
    SignUpRequest,
    StageBar,
    StageMoveRequest,
)
from session_gate import GateState, SessionGate
from stages import STAGE_NAMES
from store import AccountStore

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class GateRegistry:
    """Signed-in clients by session token.

    A user keeps at most one live gate, so the store holds one board
    subscription per user. Gates whose token no longer resolves are dropped.
    """

    def __init__(self, provider: IdentityProvider):
        self.provider = provider
        self._gates: Dict[str, SessionGate] = {}
        self._lock = threading.Lock()

    def __len__(self):
        return len(self._gates)

    def get(self, token):
        """Return the gate for a live token; evict it if the token has expired or was revoked."""
        if self.provider.resolve(token) is None:
            self.discard(token)
            return None
        with self._lock:
            return self._gates.get(token)

    def add(self, token, gate):
        with self._lock:
            stale = [t for t, g in self._gates.items()
                     if g is not gate and (t == token or g.user is None or g.user.id == gate.user.id
                                           or self.provider.resolve(t) is None)]
            evicted = [self._gates.pop(t) for t in stale]
            self._gates[token] = gate
        for old in evicted:
            old.unmount()
        if evicted:
            logger.info("Evicted %d stale session gates", len(evicted))

    def discard(self, token):
        with self._lock:
            gate = self._gates.pop(token, None)
        if gate is not None:
            gate.unmount()
        return gate


# ----- response builders -----
def board_state(board: PipelineBoard) -> BoardResponse:
    metrics = board.metrics
    return BoardResponse(
        stages=STAGE_NAMES,
        columns=board.columns,
        metrics=PipelineMetricsResponse(
            total_pipeline_value=metrics.total_pipeline_value,
            active_deals=metrics.active_deals,
            upcoming_follow_ups=metrics.upcoming_follow_ups,
            stage_chart=[
                StageBar(stage=bar.stage, value=bar.value, height_percent=bar.height_percent)
                for bar in metrics.stage_chart
            ],
        ),
        error=board.error,
    )


def editor_state(editor: AccountEditor) -> EditorResponse:
    return EditorResponse(
        account_id=editor.account_id,
        is_open=editor.is_open,
        form=editor.form,
        new_note=editor.new_note,
        new_note_sentiment=editor.new_note_sentiment,
        email_draft=editor.email_draft,
        agenda=editor.agenda,
        agenda_html=editor.agenda_html,
        status=editor.status,
        error=editor.error,
        loading_ai=editor.loading_ai,
        saving=editor.saving,
        show_delete_confirm=editor.show_delete_confirm,
        dictation=[
            DictationState(target=t, state=s.state.value, live_transcript=s.live_transcript)
            for t, s in editor.dictation.items()
        ],
    )


def create_app(settings: Optional[Settings] = None, ai: Optional[GenerativeClient] = None) -> FastAPI:
    settings = settings or Settings.from_env()

    app = FastAPI(title="Pipeline CRM API")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    try:
        settings.require_identity()
    except ConfigurationError as e:
        logger.error("Configuration error: %s", e)

        @app.middleware("http")
        async def configuration_missing(request: Request, call_next):
            return JSONResponse(status_code=503, content={"detail": IDENTITY_CONFIG_MISSING})

        return app

    engine = make_engine(settings.database_url)
    Base.metadata.create_all(bind=engine)
    session_factory = make_session_factory(engine)

    store = AccountStore(session_factory)
    provider = IdentityProvider(session_factory, settings.auth_secret_key, settings.session_ttl_seconds)
    ai = ai or GenerativeClient(settings.anthropic_api_key, settings.anthropic_model, settings.anthropic_max_tokens)
    gates = GateRegistry(provider)
    if not ai.enabled:
        logger.warning("ANTHROPIC_API_KEY not configured; AI features are disabled")

    app.state.settings = settings
    app.state.store = store
    app.state.identity = provider
    app.state.ai = ai
    app.state.gates = gates

    def new_gate(auth: AuthClient) -> SessionGate:
        return SessionGate(auth, lambda uid: PipelineBoard(store.collection(uid))).mount()

    # Dependency to get the signed-in client's gate
    def get_gate(authorization: Optional[str] = Header(default=None, alias="Authorization")) -> SessionGate:
        if not authorization:
            raise HTTPException(status_code=401, detail="Missing token")
        token = authorization.replace("Bearer ", "")
        gate = gates.get(token)
        if gate is not None and gate.state is GateState.AUTHENTICATED:
            return gate
        auth = AuthClient(provider, token)
        if auth.current_user is None:
            gates.discard(token)
            raise HTTPException(status_code=401, detail="Invalid token")
        gate = new_gate(auth)
        gates.add(token, gate)
        return gate

    def get_editor(gate: SessionGate = Depends(get_gate)) -> AccountEditor:
        if gate.editor is None or not gate.editor.is_open:
            raise HTTPException(status_code=404, detail="No account editor is open")
        return gate.editor

    def auth_response(gate: SessionGate) -> AuthResponse:
        user = gate.user
        return AuthResponse(token=gate.auth.token, user_id=user.id, email=user.email,
                            display_name=user.display_name)

    # Root endpoint
    @app.get("/")
    def read_root():
        return {"message": "CRM API is running", "ai_enabled": ai.enabled}

    # ----- session gate -----
    @app.get("/session", response_model=SessionResponse)
    def get_session(authorization: Optional[str] = Header(default=None, alias="Authorization")):
        if not authorization:
            return SessionResponse(state=GateState.UNAUTHENTICATED.value)
        try:
            gate = get_gate(authorization)
        except HTTPException:
            return SessionResponse(state=GateState.UNAUTHENTICATED.value)
        user = gate.user
        return SessionResponse(state=gate.state.value, user_id=user.id, email=user.email,
                               display_name=user.display_name)

    @app.post("/auth/signup", response_model=AuthResponse)
    def sign_up(payload: SignUpRequest):
        gate = new_gate(AuthClient(provider))
        if not gate.sign_up(payload.first_name, payload.last_name, payload.email,
                            payload.password, payload.confirm_password):
            gate.unmount()
            raise HTTPException(status_code=400, detail=gate.auth_error)
        gates.add(gate.auth.token, gate)
        return auth_response(gate)

    @app.post("/auth/signin", response_model=AuthResponse)
    def sign_in(payload: SignInRequest):
        gate = new_gate(AuthClient(provider))
        if not gate.sign_in(payload.email, payload.password):
            gate.unmount()
            raise HTTPException(status_code=400, detail=gate.auth_error)
        gates.add(gate.auth.token, gate)
        return auth_response(gate)

    @app.post("/auth/signout")
    def sign_out(gate: SessionGate = Depends(get_gate)):
        token = gate.auth.token
        gate.sign_out()
        gates.discard(token)
        gate.unmount()
        return {"message": "Signed out"}

    # ----- pipeline board -----
    @app.get("/board", response_model=BoardResponse)
    def get_board(gate: SessionGate = Depends(get_gate)):
        gate.board.refresh_metrics()
        return board_state(gate.board)

    @app.get("/accounts/{account_id}", response_model=AccountResponse)
    def get_account(account_id: str, gate: SessionGate = Depends(get_gate)):
        account = gate.board.find(account_id)
        if not account:
            raise HTTPException(status_code=404, detail="Account not found")
        return account

    @app.patch("/accounts/{account_id}/stage")
    def move_account(account_id: str, payload: StageMoveRequest, gate: SessionGate = Depends(get_gate)):
        if gate.board.find(account_id) is None:
            raise HTTPException(status_code=404, detail="Account not found")
        try:
            gate.board.move_account(account_id, payload.stage)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except BoardError as e:
            raise HTTPException(status_code=500, detail=str(e))
        return {"message": "Stage update sent", "account_id": account_id, "stage": payload.stage}

    @app.post("/accounts/import", response_model=ImportResponse)
    async def import_accounts(file: UploadFile = File(...), gate: SessionGate = Depends(get_gate)):
        """Upload a CSV file of accounts and add each row to the board."""
        if not file.filename.endswith(".csv"):
            raise HTTPException(status_code=400, detail="File must be a CSV")
        contents = await file.read()
        try:
            forms = read_accounts_csv(contents)
        except (ValueError, UnicodeDecodeError) as e:
            logger.error("Error processing CSV: %s", e)
            raise HTTPException(status_code=400, detail=f"Error processing CSV: {e}")

        added_count = 0
        for form in forms:
            try:
                validate_form(form)
            except AccountValidationError as e:
                logger.warning("Skipping %s: %s", form.company_name, e)
                continue
            try:
                gate.board.add_account(form)
            except BoardError as e:
                raise HTTPException(status_code=500, detail=str(e))
            added_count += 1

        logger.info("Imported %d accounts", added_count)
        return ImportResponse(message="CSV uploaded successfully", accounts_added=added_count)

    # ----- account editor -----
    @app.post("/editor", response_model=EditorResponse)
    def open_editor(payload: OpenEditorRequest, gate: SessionGate = Depends(get_gate)):
        account = None
        if payload.account_id:
            account = gate.board.find(payload.account_id)
            if account is None:
                raise HTTPException(status_code=404, detail="Account not found")
        gate.editor = AccountEditor(gate.board, ai, account, locale=settings.speech_locale)
        return editor_state(gate.editor)

    @app.get("/editor", response_model=EditorResponse)
    def read_editor(editor: AccountEditor = Depends(get_editor)):
        return editor_state(editor)

    @app.patch("/editor/form", response_model=EditorResponse)
    def patch_form(payload: AccountFormPatch, editor: AccountEditor = Depends(get_editor)):
        editor.update_form(**payload.model_dump(exclude_unset=True))
        return editor_state(editor)

    @app.delete("/editor")
    def close_editor(gate: SessionGate = Depends(get_gate)):
        if gate.editor is not None:
            gate.editor.close()
            gate.editor = None
        return {"message": "Editor closed"}

    @app.post("/editor/save", response_model=EditorResponse)
    def save_editor(editor: AccountEditor = Depends(get_editor)):
        try:
            saved = editor.save()
        except AccountValidationError as e:
            raise HTTPException(status_code=400, detail=str(e))
        if not saved:
            raise HTTPException(status_code=500, detail=editor.error)
        return editor_state(editor)

    @app.post("/editor/delete", response_model=EditorResponse)
    def request_delete(editor: AccountEditor = Depends(get_editor)):
        try:
            editor.request_delete()
        except AccountValidationError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return editor_state(editor)

    @app.post("/editor/delete/cancel", response_model=EditorResponse)
    def cancel_delete(editor: AccountEditor = Depends(get_editor)):
        editor.cancel_delete()
        return editor_state(editor)

    @app.post("/editor/delete/confirm", response_model=EditorResponse)
    def confirm_delete(editor: AccountEditor = Depends(get_editor)):
        try:
            deleted = editor.confirm_delete()
        except AccountValidationError as e:
            raise HTTPException(status_code=409, detail=str(e))
        if not deleted:
            raise HTTPException(status_code=500, detail=editor.error)
        return editor_state(editor)

    @app.post("/editor/email-draft", response_model=EditorResponse)
    def draft_email(editor: AccountEditor = Depends(get_editor)):
        editor.draft_email()
        return editor_state(editor)

    @app.post("/editor/agenda", response_model=EditorResponse)
    def generate_agenda(editor: AccountEditor = Depends(get_editor)):
        editor.generate_agenda()
        return editor_state(editor)

    @app.post("/editor/scan-card", response_model=EditorResponse)
    async def scan_card(file: UploadFile = File(...), editor: AccountEditor = Depends(get_editor)):
        contents = await file.read()
        editor.scan_business_card(contents, file.content_type or "image/jpeg")
        return editor_state(editor)

    def check_target(target: str):
        if target not in TARGETS:
            raise HTTPException(status_code=404, detail=f"Unknown dictation target: {target}")

    @app.post("/editor/dictation/{target}/start")
    def start_dictation(target: str, editor: AccountEditor = Depends(get_editor)):
        check_target(target)
        try:
            recognition = editor.start_dictation(target)
        except DictationBusyError as e:
            raise HTTPException(status_code=409, detail=str(e))
        return {"target": target, "state": "listening", "recognition": recognition}

    @app.post("/editor/dictation/{target}/results")
    def dictation_results(target: str, payload: RecognitionEvent, editor: AccountEditor = Depends(get_editor)):
        check_target(target)
        live = editor.dictation_result(target, payload.results, payload.result_index)
        return {"target": target, "liveTranscript": live}

    @app.post("/editor/dictation/{target}/error", response_model=EditorResponse)
    def dictation_error(target: str, payload: RecognitionError, editor: AccountEditor = Depends(get_editor)):
        check_target(target)
        editor.dictation_error(target, payload.error)
        return editor_state(editor)

    @app.post("/editor/dictation/{target}/stop", response_model=EditorResponse)
    def stop_dictation(target: str, editor: AccountEditor = Depends(get_editor)):
        check_target(target)
        editor.stop_dictation(target)
        return editor_state(editor)

    @app.post("/editor/notes", response_model=EditorResponse)
    def add_note(payload: NoteCreate, editor: AccountEditor = Depends(get_editor)):
        if editor.account is None:
            raise HTTPException(status_code=400, detail="Save the account before adding notes")
        if not editor.add_note(payload.text, payload.sentiment) and editor.error:
            raise HTTPException(status_code=500, detail=editor.error)
        return editor_state(editor)

    @app.put("/editor/notes/{index}", response_model=EditorResponse)
    def edit_note(index: int, payload: NoteEdit, editor: AccountEditor = Depends(get_editor)):
        if not 0 <= index < len(editor.form.notes):
            raise HTTPException(status_code=404, detail="Note not found")
        editor.edit_note(index, payload.text)
        return editor_state(editor)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
