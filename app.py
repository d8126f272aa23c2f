import json
import time
import numpy as np
import streamlit as st
import pandas as pd

from vaultsim.config import ScenarioConfig
from vaultsim.engine import SimulationEngine
from vaultsim.errors import VaultSimError
from vaultsim.fixed_point import format_fraction

st.set_page_config(page_title="Backed Vault Simulator", layout="wide")


def get_engine() -> SimulationEngine:
    if "engine" not in st.session_state:
        cfg = ScenarioConfig()
        st.session_state.cfg = cfg
        st.session_state.seed = 1
        st.session_state.engine = SimulationEngine(cfg=cfg, seed=st.session_state.seed)
    return st.session_state.engine


def reset_engine(reset_config: bool = False) -> None:
    if reset_config:
        cfg = ScenarioConfig()
        seed = 1
        st.session_state.cfg = cfg
        st.session_state.seed = seed
    else:
        cfg = st.session_state.get("cfg", ScenarioConfig())
        seed = st.session_state.get("seed", 1)
    st.session_state.engine = SimulationEngine(cfg=cfg, seed=seed)


engine = get_engine()

st.title("Backed Vault Simulator")
st.caption("Each vault backs one asset; holders burn units to withdraw a proportional share of collateral.")

def _fmt_duration(seconds: float) -> str:
    if seconds < 0:
        seconds = 0.0
    mins = int(seconds // 60)
    secs = seconds - (mins * 60)
    return f"{mins}m {secs:0.1f}s"

def _fmt(value) -> str:
    return f"{int(value):,}"

def _render_kpi_grid(kpis, columns: int = 5) -> None:
    for idx in range(0, len(kpis), columns):
        row = kpis[idx: idx + columns]
        cols = st.columns(columns)
        for col, (label, value) in zip(cols, row):
            col.metric(label, value)

def _format_table_numbers(df: pd.DataFrame) -> pd.DataFrame:
    formatted = df.copy()
    numeric_cols = formatted.select_dtypes(include=["number"]).columns
    if len(numeric_cols) == 0:
        return formatted
    formatted[numeric_cols] = formatted[numeric_cols].apply(
        lambda col: col.map(lambda value: f"{value:,.0f}" if pd.notnull(value) else "")
    )
    return formatted

def _format_event_meta(meta) -> str:
    if meta is None:
        return ""
    if isinstance(meta, str):
        return meta
    try:
        return json.dumps(meta, sort_keys=True)
    except TypeError:
        return str(meta)

with st.sidebar:
    st.header("Sim Controls")

    st.subheader("Run")
    if st.button("Restart simulation"):
        reset_engine(reset_config=True)
        engine = st.session_state.engine
        st.session_state.run_progress = 0.0
        st.session_state.run_progress_label = "Idle"
    st.caption("Restart resets the simulation to tick 0 with default settings.")
    if "seed" not in st.session_state:
        st.session_state.seed = 1
    st.number_input(
        "Random seed",
        min_value=1,
        max_value=100000,
        key="seed",
    )

    run_ticks = st.slider("Ticks to run", min_value=1, max_value=200, value=10)
    c3, c4 = st.columns(2)
    run_one = c3.button("Step 1 tick")
    run_many = c4.button("Run N ticks")
    progress_label = st.session_state.get("run_progress_label", "Idle")
    progress_value = float(st.session_state.get("run_progress", 0.0))
    progress_bar = st.progress(progress_value, text=progress_label)
    if run_one or run_many:
        total = 1 if run_one else int(run_ticks)
        start_ts = time.time()
        for idx in range(total):
            engine.step(1)
            progress = (idx + 1) / total
            progress_bar.progress(progress, text=f"Run progress: {progress:.0%}")
        elapsed = time.time() - start_ts
        st.session_state.run_progress = 1.0
        st.session_state.run_progress_label = f"Run progress: 100% ({_fmt_duration(elapsed)})"
        progress_bar.progress(1.0, text=st.session_state.run_progress_label)
    st.caption(f"Current tick: {engine.tick}")

    st.subheader("Vaults")
    c1, c2 = st.columns(2)
    if c1.button("Add token vault"):
        engine.add_vault(kind="fungible")
    if c2.button("Add item vault"):
        engine.add_vault(kind="items")

    st.subheader("Activity")
    engine.cfg.redemptions_per_tick = int(st.number_input(
        "Redemptions per tick", min_value=0, max_value=100,
        value=int(engine.cfg.redemptions_per_tick), step=1,
    ))
    engine.cfg.loans_per_tick = int(st.number_input(
        "Loans per tick", min_value=0, max_value=50,
        value=int(engine.cfg.loans_per_tick), step=1,
    ))
    engine.cfg.borrower_shortfall_prob = st.slider(
        "Borrower shortfall probability", 0.0, 1.0,
        float(engine.cfg.borrower_shortfall_prob), step=0.05,
        help="Chance a borrower repays one unit short; the whole loan must then roll back.",
    )
    engine.cfg.loan_size_frac = st.slider(
        "Loan size (share of liquidity)", 0.0, 1.0,
        float(engine.cfg.loan_size_frac), step=0.05,
    )

tab_network, tab_vaults, tab_quote, tab_events = st.tabs(["Network Overview", "Vaults", "Quote", "Events"])

with tab_network:
    net_df = engine.metrics.network_df()
    if net_df.empty:
        st.info("No metrics yet. Step the simulation.")
    else:
        latest = net_df.iloc[-1]
        _render_kpi_grid([
            ("Vaults", _fmt(latest["num_vaults"])),
            ("Non-burnable", _fmt(latest["non_burnable_vaults"])),
            ("Supply held", _fmt(latest["held_supply_vaults"])),
            ("Zero excluded", _fmt(latest["zero_excluded_vaults"])),
            ("Hooked", _fmt(latest["hooked_vaults"])),
        ])
        totals = net_df[["redemptions_tick", "redemption_failures_tick", "loans_tick", "loan_failures_tick"]].sum()
        _render_kpi_grid([
            ("Redemptions", _fmt(totals["redemptions_tick"])),
            ("Failed redemptions", _fmt(totals["redemption_failures_tick"])),
            ("Loans settled", _fmt(totals["loans_tick"])),
            ("Loans rolled back", _fmt(totals["loan_failures_tick"])),
            ("Protocol fees (units)", _fmt(net_df["protocol_fees_tick"].sum())),
        ], columns=5)
        st.line_chart(net_df.set_index("tick")[["redemptions_tick", "redemption_failures_tick",
                                                "loans_tick", "loan_failures_tick"]])
        collateral_cols = [c for c in net_df.columns if c.startswith("collateral_")]
        if collateral_cols:
            st.line_chart(net_df.set_index("tick")[collateral_cols])
        reasons = engine.fail_reasons()
        if reasons:
            st.write("**Failure reasons**")
            st.dataframe(pd.DataFrame(
                [{"reason": k, "count": v} for k, v in sorted(reasons.items(), key=lambda kv: -kv[1])]
            ), use_container_width=True)

with tab_vaults:
    rows = [engine.vault_row(v) for v in engine.factory.vaults()]
    if not rows:
        st.info("No vaults yet.")
    else:
        df = pd.DataFrame(rows)
        st.dataframe(_format_table_numbers(df), use_container_width=True)
        sel = st.selectbox("Select vault", [r["vault"] for r in rows],
                           format_func=lambda a: f"{a[:10]}.. ({engine.label(engine.ledger.contract(a).backed_asset)})")
        vault = engine.ledger.contract(sel)
        c1, c2, c3, c4 = st.columns(4)
        c1.metric("Burn mode", vault.adaptation.burn_mode.value)
        c2.metric("Hook", vault.hook_status.value)
        c3.metric("Adjusted supply", _fmt(vault.adjusted_supply()))
        c4.metric("Protocol fee", format_fraction(vault.protocol_fee))
        inv = pd.DataFrame([
            {"asset": engine.label(c), "balance": vault.balance(c)} for c in engine.collaterals
        ])
        st.write("**Collateral**")
        st.dataframe(inv, use_container_width=True)
        snap = engine.metrics.latest_vaults()
        if not snap.empty:
            st.write(f"**Last vault snapshot (tick {int(snap['tick'].iloc[0])})**")
            st.dataframe(_format_table_numbers(snap), use_container_width=True)

with tab_quote:
    vaults = engine.factory.vaults()
    if not vaults:
        st.info("No vaults yet.")
    else:
        vault = st.selectbox("Vault", vaults, format_func=lambda v: engine.label(v.backed_asset))
        supply = max(1, vault.adjusted_supply())
        share = st.slider("Share of adjusted supply to surrender", 0.0, 1.0, 0.1, step=0.01)
        units = max(1, int(np.floor(supply * share)))
        try:
            quote = vault.quote(units, engine.collaterals)
        except VaultSimError as exc:
            st.warning(f"Quote failed: {exc.reason}")
        else:
            st.caption(f"Surrender {units:,} of {supply:,} units; supply delta {format_fraction(quote.supply_delta)}")
            st.dataframe(pd.DataFrame([
                {**p.to_dict(), "asset": engine.label(p.asset)} for p in quote.payouts
            ]), use_container_width=True)

with tab_events:
    st.subheader("Event Log (latest 300)")
    tail = engine.log.tail(300)
    if not tail:
        st.info("No events yet.")
    else:
        df = pd.DataFrame([e.__dict__ for e in tail])
        df["_order"] = range(len(df))
        df = df.sort_values(["tick", "_order"], ascending=False).drop(columns="_order")
        if "meta" in df.columns:
            df["meta"] = df["meta"].apply(_format_event_meta)
        for col in ("actor_id", "vault_id", "asset_id"):
            if col in df.columns:
                df[col] = df[col].apply(lambda a: engine.label(a) if isinstance(a, str) else "")
        st.dataframe(df, use_container_width=True)
