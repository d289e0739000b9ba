# Copyright (c) 2025 Dave Tofflemire, SigilDERG Project
# Licensed under the GNU Affero General Public License v3.0 (AGPLv3).
# Commercial licenses are available. Contact: davetmire85@gmail.com

from functools import lru_cache

from lancedb.pydantic import LanceModel, Vector

TABLE_NAME = "code_chunks"


@lru_cache(maxsize=None)
def get_code_chunk_model(dimension: int) -> type[LanceModel]:
    """Row model for the chunk table with a vector column of ``dimension`` floats."""

    class CodeChunkRow(LanceModel):
        id: str
        vector: Vector(dimension)  # type: ignore[valid-type]
        file_path: str
        code: str
        start_line: int
        end_line: int
        file_hash: str
        chunk_type: str
        language: str
        symbol_name: str

    return CodeChunkRow
