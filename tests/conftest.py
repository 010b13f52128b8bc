from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Dict, Iterator

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from journeyboard.memory.store import MemoryStore  # noqa: E402


@pytest.fixture()
def store(tmp_path: Path) -> Iterator[MemoryStore]:
    """SQLite store living under the test's temporary directory."""

    with MemoryStore(tmp_path / "journeyboard.sqlite") as memory:
        yield memory


@pytest.fixture()
def anamnese_context() -> Dict[str, Any]:
    """Context satisfying every anamnese requirement."""

    return {
        "nome_usuario": "Ana Souza",
        "cargo": "Diretora",
        "empresa_nome": "Acme Ltda",
        "segmento": "Varejo",
        "porte": "Pequena",
        "tempo_mercado": "5 anos",
        "tamanho_equipe": "12",
        "desafios_principais": ["Vendas baixas", "Processos manuais"],
    }
