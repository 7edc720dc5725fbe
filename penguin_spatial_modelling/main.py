"""
主程序入口

实现命令行接口，可以通过参数控制运行模式：
- fit: 在企鹅数据上拟合模型并保存
- evaluate: 在测试集上评估已保存的模型
- predict: 将已保存的模型应用到预测变量栅格，生成预测图
"""

import argparse
import yaml
import pandas as pd
from pathlib import Path
from typing import Dict, Optional, Sequence
import logging

from .data_preprocessing import load_penguins, split_train_test
from .evaluation import (
    calculate_all_metrics,
    calculate_classification_metrics,
    plot_feature_importance,
    plot_prediction_map,
    plot_scatter,
    summarize_prediction_grid
)
from .inference import predict_raster
from .models import load_model, save_model
from .training import MODEL_KINDS, fit_model

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def load_config(config_path: Path) -> Dict:
    """加载配置文件。"""
    with open(config_path, 'r', encoding='utf-8') as f:
        config = yaml.safe_load(f)
    return config


def default_model_path(config: Dict, kind: str) -> Path:
    return Path(config['output_paths']['models_dir']) / f"{kind}.joblib"


def _split(config: Dict, kind: str):
    model_config = config['models'][kind]
    df = load_penguins(Path(config['data_paths']['penguins_csv']), drop_na=False)
    split_config = config.get('data_split', {})
    used = [model_config['target']] + list(model_config['predictors'])
    if model_config.get('group'):
        used.append(model_config['group'])
    df = df.dropna(subset=used).reset_index(drop=True)
    return split_train_test(
        df,
        test_ratio=split_config.get('test_ratio', 0.2),
        random_state=split_config.get('random_state', 42),
        stratify=model_config['target'] if kind == 'rf_classification' else None
    )


def fit_mode(config: Dict, kind: str, model_path: Optional[Path] = None) -> Path:
    """拟合模式。"""
    logger.info("=" * 60)
    logger.info(f"Fit Mode: {kind}")
    logger.info("=" * 60)

    train_df, _ = _split(config, kind)
    model = fit_model(kind, train_df, config['models'][kind])

    if hasattr(model, 'summary'):
        logger.info(f"Model summary:\n{model.summary()}")
    if getattr(model, 'oob_score', None) is not None:
        logger.info(f"Out-of-bag score: {model.oob_score:.4f}")

    model_path = model_path or default_model_path(config, kind)
    save_model(model, model_path)
    logger.info("Fitting completed!")
    return model_path


def evaluate_mode(config: Dict, kind: str, model_path: Optional[Path] = None) -> Dict:
    """评估模式：在测试集上计算指标并绘图。"""
    logger.info("=" * 60)
    logger.info(f"Evaluation Mode: {kind}")
    logger.info("=" * 60)

    model = load_model(model_path or default_model_path(config, kind))
    _, test_df = _split(config, kind)

    output_dir = Path(config['output_paths']['evaluation_dir']) / kind
    output_dir.mkdir(parents=True, exist_ok=True)

    features = model.feature_frame(test_df)
    # 测试集中拟合时未见过的类别无法预测
    unseen = model.unseen_level_mask(features)
    if unseen.any():
        logger.warning(f"Skipping {int(unseen.sum())} test rows with categories unseen during fitting")
        test_df = test_df[~unseen].reset_index(drop=True)
        features = features[~unseen].reset_index(drop=True)

    y_pred = model.predict_frame(features)
    y_true = test_df[model.target]

    if model.task == 'regression':
        metrics = calculate_all_metrics(y_true.to_numpy(dtype=float), y_pred)
        plot_scatter(
            y_true.to_numpy(dtype=float), y_pred,
            metrics={name: metrics[name] for name in ('R2', 'RMSE')},
            save_path=output_dir / 'scatter.png',
            title=f"{kind}: predicted vs observed {model.target}"
        )
    else:
        metrics = calculate_classification_metrics(y_true.astype(str), y_pred, labels=model.classes)
        metrics['confusion_matrix'].to_csv(output_dir / 'confusion_matrix.csv', encoding='utf-8-sig')
        logger.info(f"Confusion matrix:\n{metrics['confusion_matrix']}")

    if hasattr(model, 'feature_importances'):
        plot_feature_importance(model.feature_importances(), save_path=output_dir / 'importance.png')

    scalar_metrics = {name: value for name, value in metrics.items() if not isinstance(value, pd.DataFrame)}
    pd.DataFrame([scalar_metrics]).to_csv(output_dir / 'metrics.csv', index=False, encoding='utf-8-sig')
    for name, value in scalar_metrics.items():
        logger.info(f"{name}: {value:.4f}")

    logger.info("Evaluation completed!")
    return metrics


def predict_mode(
    config: Dict,
    kind: str,
    model_path: Optional[Path] = None,
    raster_path: Optional[Path] = None,
    output_path: Optional[Path] = None
) -> Path:
    """预测模式：将模型应用到预测变量栅格。"""
    inference_config = config.get('inference', {})
    raster_path = raster_path or Path(config['data_paths']['predictor_raster'])
    output_path = output_path or Path(config['output_paths']['predictions_dir']) / f"{kind}_prediction.tif"

    model = load_model(model_path or default_model_path(config, kind))
    prediction = predict_raster(
        model,
        raster_path,
        output_path,
        band_names=inference_config.get('band_names'),
        categories=inference_config.get('categories'),
        probabilities=bool(inference_config.get('probabilities', False)) and model.task == 'classification',
        tile_rows=inference_config.get('tile_rows', 256),
        n_workers=inference_config.get('n_workers', 1),
        unseen_category=inference_config.get('unseen_category', 'nodata')
    )

    logger.info(f"Prediction summary: {summarize_prediction_grid(prediction)}")
    plot_prediction_map(
        prediction,
        save_path=output_path.with_suffix('.png'),
        title=f"{kind}: predicted {model.target or 'value'}"
    )
    return output_path


def main(argv: Optional[Sequence[str]] = None):
    """主函数。"""
    parser = argparse.ArgumentParser(
        description='企鹅数据统计建模与栅格空间预测'
    )

    parser.add_argument(
        '--mode',
        type=str,
        required=True,
        choices=['fit', 'evaluate', 'predict'],
        help='运行模式：fit（拟合）、evaluate（评估）、predict（栅格预测）'
    )

    parser.add_argument(
        '--config',
        type=str,
        default='configs/workshop_config.yaml',
        help='配置文件路径'
    )

    parser.add_argument(
        '--model_kind',
        type=str,
        default='rf_regression',
        choices=list(MODEL_KINDS),
        help='模型类型：linear、mixed、rf_regression、rf_classification'
    )

    parser.add_argument(
        '--model_path',
        type=str,
        default=None,
        help='模型文件路径，默认为 <models_dir>/<model_kind>.joblib'
    )

    parser.add_argument(
        '--raster_path',
        type=str,
        default=None,
        help='预测时的输入栅格路径'
    )

    parser.add_argument(
        '--output_path',
        type=str,
        default=None,
        help='预测栅格输出路径'
    )

    args = parser.parse_args(argv)

    config = load_config(Path(args.config))
    model_path = Path(args.model_path) if args.model_path else None

    if args.mode == 'fit':
        fit_mode(config, args.model_kind, model_path)

    elif args.mode == 'evaluate':
        evaluate_mode(config, args.model_kind, model_path)

    elif args.mode == 'predict':
        raster_path = Path(args.raster_path) if args.raster_path else None
        if raster_path is None and not config.get('data_paths', {}).get('predictor_raster'):
            logger.error("预测模式需要提供 --raster_path 参数或在配置中设置 predictor_raster")
            return
        predict_mode(
            config,
            args.model_kind,
            model_path,
            raster_path,
            Path(args.output_path) if args.output_path else None
        )


if __name__ == '__main__':
    main()
