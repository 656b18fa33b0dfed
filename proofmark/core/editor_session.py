"""Editor session: wires document edits to analysis and mark reconciliation."""

from proofmark.core.config import Settings, get_settings
from proofmark.core.document_tree import DocumentTree, TextEdit
from proofmark.core.errors import StaleSuggestionError, ValidationError
from proofmark.core.hybrid_grammar import HybridGrammarService
from proofmark.core.local_analyzer import LocalAnalyzer
from proofmark.core.logging import get_logger
from proofmark.core.personal_filter import PersonalDictionary
from proofmark.core.reconciler import Reconciler, ReconcileOutcome, SuggestionsUpdated
from proofmark.core.remote_refiner import HttpRemoteRefiner, TokenProvider
from proofmark.core.request_controller import DebouncedRequestController
from proofmark.core.schemas_grammar import CheckOptions, CheckResult, EditorSuggestion
from proofmark.core.suggestion_cache import SuggestionCache

logger = get_logger(__name__)


class EditorSession:
    """
    One open document and the services that keep its suggestions current.

    User edits reach the reconciler (shifting and invalidating marks) and
    schedule a debounced check. Check results pass through the personal
    dictionary before being reconciled into marks.
    """

    def __init__(
        self,
        document: DocumentTree,
        service: HybridGrammarService,
        dictionary: PersonalDictionary | None = None,
        options: CheckOptions | None = None,
        debounce_delay: float = 0.3,
        min_text_length: int = 3,
        auto_regenerate: bool = True,
        auto_regenerate_delay: float = 1.0,
        regenerate_timeout: float | None = None,
    ):
        self.document = document
        self.service = service
        self.dictionary = dictionary if dictionary is not None else PersonalDictionary()
        self.options = options or CheckOptions()
        self.auto_regenerate = auto_regenerate

        self.reconciler = Reconciler(
            document,
            refiner=service.refiner,
            auto_regenerate_delay=auto_regenerate_delay,
            regenerate_timeout=regenerate_timeout,
            on_reanalyze=self.request_check,
        )
        self.controller: DebouncedRequestController[CheckResult] = DebouncedRequestController(
            self._analyze,
            on_result=self._on_result,
            on_error=self._on_error,
            delay=debounce_delay,
            min_length=min_text_length,
        )

        self.last_result: CheckResult | None = None
        self.last_error: Exception | None = None
        self._owned_refiner: HttpRemoteRefiner | None = None
        self._unsubscribe = document.add_update_listener(self._on_document_change)

    @classmethod
    def from_settings(
        cls,
        document: DocumentTree,
        settings: Settings | None = None,
        token_provider: TokenProvider | None = None,
        dictionary: PersonalDictionary | None = None,
        options: CheckOptions | None = None,
    ) -> "EditorSession":
        """Build a session with services configured from settings."""
        settings = settings or get_settings()

        refiner = None
        if token_provider is not None:
            refiner = HttpRemoteRefiner(
                settings.REMOTE_SERVICE_URL,
                token_provider=token_provider,
                timeout=settings.REMOTE_TIMEOUT_SECONDS,
            )

        service = HybridGrammarService(
            LocalAnalyzer(language=settings.SPELL_LANGUAGE),
            refiner=refiner,
            cache=SuggestionCache(
                ttl_seconds=settings.CACHE_TTL_SECONDS,
                max_entries=settings.CACHE_MAX_ENTRIES,
            ),
            max_text_chars=settings.MAX_TEXT_CHARS,
        )
        session = cls(
            document,
            service,
            dictionary=dictionary,
            options=options,
            debounce_delay=settings.DEBOUNCE_DELAY_MS / 1000,
            min_text_length=settings.MIN_TEXT_LENGTH,
            auto_regenerate_delay=settings.AUTO_REGENERATE_DELAY_MS / 1000,
            regenerate_timeout=settings.REMOTE_TIMEOUT_SECONDS,
        )
        session._owned_refiner = refiner
        return session

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    def request_check(self) -> None:
        """Schedule a debounced check of the current text."""
        self.controller.trigger(self.document.text_content())

    async def check_now(self) -> CheckResult | None:
        """Check the current text immediately."""
        return await self.controller.run_now(self.document.text_content())

    async def retry(self) -> CheckResult | None:
        """Re-run the last check after an error."""
        self.last_error = None
        self.controller.reset()
        return await self.check_now()

    async def _analyze(self, text: str) -> CheckResult:
        return await self.service.check_grammar(
            text, self.options, request_id=self.controller.current_request_id
        )

    def _on_result(self, request_id: int, result: CheckResult) -> None:
        suggestions = self.dictionary.filter(result.suggestions)
        self.reconciler.apply_event(SuggestionsUpdated(suggestions))

        self.last_result = result
        self.last_error = result.remote_error
        if self.auto_regenerate:
            self.reconciler.schedule_auto_regeneration()

    def _on_error(self, request_id: int, error: Exception) -> None:
        logger.warning(f"Check {request_id} failed: {error}")
        self.last_error = error

    def _on_document_change(self, edit: TextEdit) -> None:
        if edit.origin == "engine" or self.reconciler.is_applying:
            return
        self.reconciler.handle_document_change(edit)
        self.request_check()

    # ------------------------------------------------------------------
    # User actions
    # ------------------------------------------------------------------

    def suggestions(self) -> list[EditorSuggestion]:
        return self.reconciler.active_suggestions()

    def categorized(self) -> dict[str, list[EditorSuggestion]]:
        return self.reconciler.categorized()

    def apply(self, suggestion_id: str) -> ReconcileOutcome | None:
        """Apply a suggestion. Stale or advisory-only suggestions are skipped (returns None)."""
        try:
            outcome = self.reconciler.apply_suggestion(suggestion_id)
        except (StaleSuggestionError, ValidationError) as e:
            logger.info(f"Apply skipped: {e}")
            return None
        self.request_check()
        return outcome

    def dismiss(self, suggestion_id: str) -> ReconcileOutcome:
        return self.reconciler.dismiss_suggestion(suggestion_id)

    async def regenerate(self, suggestion_id: str) -> ReconcileOutcome | None:
        return await self.reconciler.regenerate(suggestion_id)

    def add_to_dictionary(self, word: str) -> ReconcileOutcome:
        """
        Add a word to the personal dictionary and drop matching suggestions.

        Raises:
            ValidationError: If the word is empty or already present
        """
        self.dictionary.add_word(word)
        remaining = self.dictionary.filter(self.reconciler.active_suggestions())
        return self.reconciler.apply_event(SuggestionsUpdated(remaining))

    async def aclose(self) -> None:
        self._unsubscribe()
        await self.controller.aclose()
        await self.reconciler.aclose()
        if self._owned_refiner is not None:
            await self._owned_refiner.aclose()
