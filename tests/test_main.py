# tests/test_main.py
from pathlib import Path

import numpy as np
import pandas as pd
import pytest
import rasterio
import yaml

from penguin_spatial_modelling.main import load_config, main

from conftest import write_raster

PROJECT_CONFIG = Path(__file__).resolve().parents[1] / 'configs' / 'workshop_config.yaml'


@pytest.fixture
def config_path(tmp_path, penguins_csv, predictor_arrays):
    config = load_config(PROJECT_CONFIG)
    config['data_paths'] = {
        'penguins_csv': str(penguins_csv),
        'predictor_raster': str(write_raster(tmp_path / 'predictors.tif', predictor_arrays)),
    }
    config['output_paths'] = {
        'models_dir': str(tmp_path / 'models'),
        'evaluation_dir': str(tmp_path / 'evaluation'),
        'predictions_dir': str(tmp_path / 'predictions'),
    }
    for kind in ('rf_regression', 'rf_classification'):
        config['models'][kind]['forest']['n_estimators'] = 30
    config['inference']['tile_rows'] = 5
    config['inference']['n_workers'] = 2

    path = tmp_path / 'config.yaml'
    with open(path, 'w', encoding='utf-8') as f:
        yaml.safe_dump(config, f)
    return path


def test_project_config_is_complete():
    config = load_config(PROJECT_CONFIG)

    assert set(config['models']) == {'linear', 'mixed', 'rf_regression', 'rf_classification'}
    assert config['inference']['unseen_category'] in ('nodata', 'error')
    assert config['inference']['categories']['sex'] == {1: 'female', 2: 'male'}


def test_fit_evaluate_predict_regression(tmp_path, config_path):
    main(['--mode', 'fit', '--config', str(config_path), '--model_kind', 'rf_regression'])
    assert (tmp_path / 'models' / 'rf_regression.joblib').exists()

    main(['--mode', 'evaluate', '--config', str(config_path), '--model_kind', 'rf_regression'])
    metrics = pd.read_csv(tmp_path / 'evaluation' / 'rf_regression' / 'metrics.csv')
    assert {'R2', 'RMSE', 'MAE'} <= set(metrics.columns)
    assert (tmp_path / 'evaluation' / 'rf_regression' / 'importance.png').exists()

    main(['--mode', 'predict', '--config', str(config_path), '--model_kind', 'rf_regression'])
    output = tmp_path / 'predictions' / 'rf_regression_prediction.tif'
    with rasterio.open(output) as src:
        assert (src.height, src.width) == (12, 9)
        data = src.read(1)
    # bill_length_mm[0, 0] 和 sex[2, 3] 为nodata
    assert data[0, 0] == -9999.0
    assert data[2, 3] == -9999.0
    assert np.sum(data == -9999.0) == 2
    assert (tmp_path / 'predictions' / 'rf_regression_prediction.png').exists()


def test_fit_and_predict_classification(tmp_path, config_path):
    main(['--mode', 'fit', '--config', str(config_path), '--model_kind', 'rf_classification'])
    main(['--mode', 'evaluate', '--config', str(config_path), '--model_kind', 'rf_classification'])
    assert (tmp_path / 'evaluation' / 'rf_classification' / 'confusion_matrix.csv').exists()

    output = tmp_path / 'species.tif'
    main([
        '--mode', 'predict', '--config', str(config_path), '--model_kind', 'rf_classification',
        '--output_path', str(output)
    ])
    with rasterio.open(output) as src:
        assert src.count == 4
        probabilities = src.read([1, 2, 3])
        labels = src.read(4)

    valid = labels != -9999.0
    assert labels[0, 0] == -9999.0
    np.testing.assert_allclose(probabilities[:, valid].sum(axis=0), 1.0, atol=1e-5)
    assert set(np.unique(labels[valid])) <= {1.0, 2.0, 3.0}


def test_fit_linear_and_mixed(tmp_path, config_path):
    main(['--mode', 'fit', '--config', str(config_path), '--model_kind', 'linear'])
    main(['--mode', 'fit', '--config', str(config_path), '--model_kind', 'mixed'])

    assert (tmp_path / 'models' / 'linear.joblib').exists()
    assert (tmp_path / 'models' / 'mixed.joblib').exists()

    main(['--mode', 'predict', '--config', str(config_path), '--model_kind', 'linear'])
    with rasterio.open(tmp_path / 'predictions' / 'linear_prediction.tif') as src:
        data = src.read(1)
    assert data[2, 3] == -9999.0
    assert np.all(data[data != -9999.0] > 2000)
