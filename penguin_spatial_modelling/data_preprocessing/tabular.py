"""
表格数据读取

读取企鹅形态测量数据（Palmer penguins格式）并划分训练集和测试集。
"""

from pathlib import Path
from typing import Optional, Sequence, Tuple
import logging

import pandas as pd
from sklearn.model_selection import train_test_split

logger = logging.getLogger(__name__)

PENGUIN_COLUMNS = [
    'species', 'island', 'bill_length_mm', 'bill_depth_mm',
    'flipper_length_mm', 'body_mass_g', 'sex', 'year'
]
CATEGORICAL_COLUMNS = ['species', 'island', 'sex']


def load_penguins(
    csv_path: Path,
    drop_na: bool = True,
    columns: Optional[Sequence[str]] = None
) -> pd.DataFrame:
    """
    读取企鹅数据CSV。

    参数:
        csv_path: CSV路径
        drop_na: 是否删除含缺失值的行
        columns: 删除缺失值时考虑的列，None表示所有列

    返回:
        DataFrame，分类列为字符串（object类型）
    """
    csv_path = Path(csv_path)
    if not csv_path.exists():
        raise FileNotFoundError(f"Penguin data not found: {csv_path}")

    df = pd.read_csv(csv_path, na_values=['NA', ''])
    # R导出的CSV可能带有行号列
    df = df.drop(columns=[col for col in df.columns if col.startswith('Unnamed')])

    missing = [col for col in PENGUIN_COLUMNS if col not in df.columns]
    if len(missing) == len(PENGUIN_COLUMNS):
        raise ValueError(f"{csv_path} does not look like penguin data (columns: {list(df.columns)})")
    if missing:
        logger.warning(f"Penguin data has no column(s): {missing}")

    for col in CATEGORICAL_COLUMNS:
        if col in df.columns:
            df[col] = df[col].where(df[col].isna(), df[col].astype(str)).astype(object)

    logger.info(f"Loaded {len(df)} penguin records from {csv_path}")

    if drop_na:
        before = len(df)
        df = df.dropna(subset=list(columns) if columns is not None else None).reset_index(drop=True)
        if len(df) < before:
            logger.info(f"Dropped {before - len(df)} rows with missing values")

    return df


def split_train_test(
    df: pd.DataFrame,
    test_ratio: float = 0.2,
    random_state: int = 42,
    stratify: Optional[str] = None
) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """划分训练集和测试集，可按某列分层。"""
    train_df, test_df = train_test_split(
        df,
        test_size=test_ratio,
        random_state=random_state,
        stratify=df[stratify] if stratify is not None else None
    )
    logger.info(f"Train data: {len(train_df)} samples, test data: {len(test_df)} samples")
    return train_df.reset_index(drop=True), test_df.reset_index(drop=True)
