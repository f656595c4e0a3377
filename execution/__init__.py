"""
Sizing, risk gating and staged execution.

Modules:
    - models: Decision, Execution, RiskStateSnapshot and other shared records
    - position_sizer: Fractional Kelly sizing with adaptive scaling
    - risk_gates: The six tradeability gates
    - risk_state: RuntimeRiskState single-writer ledger and DailyResetScheduler
    - risk_state_store: SQLite persistence and audit log for the risk state
    - venue: VenueClient protocol and venue error taxonomy
    - controller: StagedExecutionController (paper, shadow, live)
    - pipeline: DecisionPipeline wiring sizer, gates and controller

Example:
    >>> from config.settings import load_settings
    >>> from execution.controller import StagedExecutionController
    >>> from execution.pipeline import DecisionPipeline, SignalInput
    >>> from execution.position_sizer import KellyPositionSizer
    >>> from execution.risk_state import RuntimeRiskState
    >>> from execution.risk_state_store import SQLiteRiskStateStore
    >>>
    >>> settings = load_settings()
    >>> store = SQLiteRiskStateStore(settings.storage.risk_state_db)
    >>> risk_state = RuntimeRiskState(store, settings.risk_limits)
    >>> controller = StagedExecutionController(risk_state, settings.execution)
    >>> sizer = KellyPositionSizer.from_config(
    ...     settings.sizing, max_per_market=settings.risk_limits.max_per_market
    ... )
    >>> pipeline = DecisionPipeline(sizer, settings.risk_limits, risk_state, controller)
"""
