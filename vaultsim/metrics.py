from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Any, List
import pandas as pd

@dataclass
class MetricsStore:
    network_rows: List[Dict[str, Any]] = field(default_factory=list)
    vault_rows: List[Dict[str, Any]] = field(default_factory=list)

    def add_network(self, row: Dict[str, Any]) -> None:
        self.network_rows.append(row)

    def add_vault_rows(self, rows: List[Dict[str, Any]]) -> None:
        self.vault_rows.extend(rows)

    def network_df(self) -> pd.DataFrame:
        return pd.DataFrame(self.network_rows)

    def vault_df(self) -> pd.DataFrame:
        return pd.DataFrame(self.vault_rows)

    def latest_vaults(self) -> pd.DataFrame:
        df = self.vault_df()
        if df.empty:
            return df
        return df[df["tick"] == df["tick"].max()].reset_index(drop=True)
