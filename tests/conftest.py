# tests/conftest.py
from pathlib import Path
from typing import Dict, Optional

import numpy as np
import pandas as pd
import pytest
import rasterio
from rasterio.transform import from_origin

from penguin_spatial_modelling.data_preprocessing import Grid

CRS = "EPSG:3031"
TRANSFORM = from_origin(-2000000.0, 2000000.0, 1000.0, 1000.0)


def make_penguins(n_per_species: int = 40, seed: int = 0) -> pd.DataFrame:
    """
    Palmer penguins 风格的合成数据：
    体重由鳍长、性别和物种决定，喙长/喙深按物种区分。
    """
    rng = np.random.default_rng(seed)
    species_params = {
        # species: (island, bill_length, bill_depth, flipper, mass offset)
        'Adelie': ('Torgersen', 38.8, 18.3, 190.0, 0.0),
        'Chinstrap': ('Dream', 48.8, 18.4, 196.0, -150.0),
        'Gentoo': ('Biscoe', 47.5, 15.0, 217.0, 400.0),
    }
    rows = []
    for species, (island, bill_length, bill_depth, flipper, offset) in species_params.items():
        for i in range(n_per_species):
            sex = 'male' if i % 2 == 0 else 'female'
            flipper_length = flipper + rng.normal(0, 5)
            rows.append({
                'species': species,
                'island': island,
                'bill_length_mm': bill_length + rng.normal(0, 1.5) + (1.5 if sex == 'male' else 0),
                'bill_depth_mm': bill_depth + rng.normal(0, 0.6),
                'flipper_length_mm': flipper_length,
                'body_mass_g': -200.0 + 20.0 * flipper_length + offset
                + (350.0 if sex == 'male' else 0.0) + rng.normal(0, 60),
                'sex': sex,
                'year': 2007 + i % 3,
            })
    return pd.DataFrame(rows)


def write_raster(
    path: Path,
    arrays: Dict[str, np.ndarray],
    transform=TRANSFORM,
    crs: Optional[str] = CRS,
    nodata: Optional[float] = -9999.0,
    describe: bool = True
) -> Path:
    """把若干二维数组写成一个多波段GeoTIFF，波段描述为数组名。"""
    names = list(arrays)
    height, width = arrays[names[0]].shape
    with rasterio.open(
        path, 'w', driver='GTiff',
        height=height, width=width, count=len(names),
        dtype='float32', crs=crs, transform=transform, nodata=nodata
    ) as dst:
        for index, name in enumerate(names, start=1):
            dst.write(np.asarray(arrays[name], dtype=np.float32), index)
            if describe:
                dst.set_band_description(index, name)
    return path


@pytest.fixture(scope="session")
def penguins() -> pd.DataFrame:
    return make_penguins()


@pytest.fixture
def penguins_csv(tmp_path: Path, penguins: pd.DataFrame) -> Path:
    df = penguins.copy()
    df['sex'] = df['sex'].astype(object)
    # 与原始数据一样包含少量缺失值
    df.loc[3, 'sex'] = None
    df.loc[5, 'bill_length_mm'] = None
    path = tmp_path / 'penguins.csv'
    df.to_csv(path, index=False, na_rep='NA')
    return path


@pytest.fixture
def example_grid() -> Grid:
    """2×2 栅格：x1 = [[1, 2], [3, NoData]]，x2 = [[5, 6], [7, 8]]。"""
    return Grid.from_arrays(
        {
            'x1': np.array([[1.0, 2.0], [3.0, np.nan]]),
            'x2': np.array([[5.0, 6.0], [7.0, 8.0]]),
        },
        transform=TRANSFORM,
        crs=CRS
    )


@pytest.fixture
def predictor_arrays() -> Dict[str, np.ndarray]:
    """与企鹅数据取值范围一致的预测变量栅格（含nodata和性别编码）。"""
    rng = np.random.default_rng(1)
    height, width = 12, 9
    arrays = {
        'bill_length_mm': rng.uniform(36, 50, (height, width)),
        'bill_depth_mm': rng.uniform(14, 20, (height, width)),
        'flipper_length_mm': rng.uniform(185, 225, (height, width)),
        'body_mass_g': rng.uniform(3200, 5800, (height, width)),
        'sex': rng.integers(1, 3, (height, width)).astype(float),
    }
    arrays['bill_length_mm'][0, 0] = -9999.0
    arrays['sex'][2, 3] = -9999.0
    return arrays
