# tests/test_models.py
import joblib
import numpy as np
import pytest

from penguin_spatial_modelling.errors import SchemaMismatchError, UnseenCategoryError
from penguin_spatial_modelling.models import (
    ClassPrediction,
    FunctionModel,
    LinearModel,
    MixedEffectsModel,
    RandomForestClassificationModel,
    RandomForestRegressionModel,
    load_model,
    save_model,
)
from penguin_spatial_modelling.training import (
    detect_categorical_levels,
    fit_linear_model,
    fit_mixed_model,
    fit_model,
    fit_random_forest,
)


MALE_VECTOR = {
    'species': 'Gentoo',
    'island': 'Biscoe',
    'bill_length_mm': 49.0,
    'bill_depth_mm': 15.2,
    'flipper_length_mm': 218.0,
    'body_mass_g': 5300.0,
    'sex': 'male',
}


@pytest.fixture(scope="module")
def linear_model(penguins):
    return fit_linear_model(penguins, 'body_mass_g', ['flipper_length_mm', 'sex'])


@pytest.fixture(scope="module")
def rf_classifier(penguins):
    return fit_random_forest(
        penguins, 'species', ['bill_length_mm', 'bill_depth_mm', 'flipper_length_mm'],
        task='classification', n_estimators=60
    )


def test_detect_categorical_levels(penguins):
    levels = detect_categorical_levels(penguins, ['sex', 'flipper_length_mm', 'island'])

    assert levels == {'sex': ['female', 'male'], 'island': ['Biscoe', 'Dream', 'Torgersen']}


def test_linear_model_fit(linear_model):
    assert isinstance(linear_model, LinearModel)
    assert linear_model.required_variables == ('flipper_length_mm', 'sex')
    assert linear_model.categorical_levels == {'sex': ('female', 'male')}
    assert list(linear_model.coefficients.index) == ['Intercept', 'flipper_length_mm', 'sex[T.male]']
    assert linear_model.r_squared > 0.7
    # 合成数据中雄性体重高约350g
    assert 250 < linear_model.coefficients['sex[T.male]'] < 450
    assert 'OLS Regression Results' in linear_model.summary()


def test_linear_model_single_prediction_matches_batch(linear_model, penguins):
    single = linear_model.predict(MALE_VECTOR)
    batch = linear_model.predict_frame(linear_model.feature_frame([MALE_VECTOR]))

    assert isinstance(single, float)
    assert single == pytest.approx(batch[0])

    coefficients = linear_model.coefficients
    expected = coefficients['Intercept'] + coefficients['flipper_length_mm'] * 218.0 + coefficients['sex[T.male]']
    assert single == pytest.approx(expected)


def test_predict_with_missing_variable_raises(linear_model):
    with pytest.raises(SchemaMismatchError) as excinfo:
        linear_model.predict({'flipper_length_mm': 200.0})

    assert excinfo.value.missing == ['sex']


def test_predict_with_unseen_level_raises(linear_model):
    with pytest.raises(UnseenCategoryError):
        linear_model.predict({'flipper_length_mm': 200.0, 'sex': 'unknown'})


def test_linear_model_drops_incomplete_rows(penguins):
    df = penguins.copy()
    df.loc[0, 'sex'] = None
    model = fit_linear_model(df, 'body_mass_g', ['flipper_length_mm', 'sex'])

    assert int(model.results.nobs) == len(df) - 1


def test_mixed_model_adds_group_intercept(penguins):
    model = fit_mixed_model(penguins, 'body_mass_g', ['flipper_length_mm', 'sex'], group='species')

    assert isinstance(model, MixedEffectsModel)
    assert model.required_variables == ('flipper_length_mm', 'sex', 'species')
    assert model.categorical_levels['species'] == ('Adelie', 'Chinstrap', 'Gentoo')
    assert set(model.random_effects) == {'Adelie', 'Chinstrap', 'Gentoo'}
    assert 'Mixed Linear Model Regression Results' in model.summary()

    gentoo = model.predict(MALE_VECTOR)
    adelie = model.predict(dict(MALE_VECTOR, species='Adelie'))
    expected_gap = model.random_effects['Gentoo'] - model.random_effects['Adelie']
    assert gentoo - adelie == pytest.approx(expected_gap)


def test_mixed_model_unseen_group_raises(penguins):
    model = fit_mixed_model(penguins, 'body_mass_g', ['flipper_length_mm'], group='species')

    with pytest.raises(UnseenCategoryError):
        model.predict({'flipper_length_mm': 200.0, 'species': 'Emperor'})


def test_mixed_model_with_numeric_group(penguins):
    df = penguins.assign(site=np.arange(len(penguins)) % 3 + 1)
    model = fit_mixed_model(df, 'body_mass_g', ['flipper_length_mm'], group='site')

    assert model.categorical_levels['site'] == ('1', '2', '3')
    assert not model.unseen_level_mask(model.feature_frame(df)).any()

    value = model.predict({'flipper_length_mm': 200.0, 'site': 2})
    assert value == pytest.approx(model.predict({'flipper_length_mm': 200.0, 'site': '2'}))
    with pytest.raises(UnseenCategoryError):
        model.predict({'flipper_length_mm': 200.0, 'site': 4})


def test_random_forest_regression(penguins):
    model = fit_random_forest(
        penguins, 'body_mass_g', ['flipper_length_mm', 'bill_depth_mm', 'sex'],
        task='regression', n_estimators=60
    )

    assert isinstance(model, RandomForestRegressionModel)
    assert model.oob_score is not None and model.oob_score > 0.5

    importances = model.feature_importances()
    assert set(importances.index) == {'sex_female', 'sex_male', 'flipper_length_mm', 'bill_depth_mm'}
    assert importances.sum() == pytest.approx(1.0)

    prediction = model.predict(MALE_VECTOR)
    assert isinstance(prediction, float)
    assert 4000 < prediction < 6500


def test_random_forest_classification(rf_classifier, penguins):
    assert isinstance(rf_classifier, RandomForestClassificationModel)
    assert rf_classifier.classes == ('Adelie', 'Chinstrap', 'Gentoo')
    assert rf_classifier.oob_error == pytest.approx(1.0 - rf_classifier.oob_score)

    prediction = rf_classifier.predict(MALE_VECTOR)
    assert isinstance(prediction, ClassPrediction)
    assert prediction.label == 'Gentoo'
    assert set(prediction.probabilities) == set(rf_classifier.classes)
    assert sum(prediction.probabilities.values()) == pytest.approx(1.0, abs=1e-6)

    labels = rf_classifier.predict_frame(rf_classifier.feature_frame(penguins))
    assert np.mean(labels == penguins['species'].to_numpy()) > 0.9


def test_fit_model_dispatch(penguins):
    config = {'target': 'body_mass_g', 'predictors': ['flipper_length_mm'], 'forest': {'n_estimators': 20}}

    assert isinstance(fit_model('linear', penguins, config), LinearModel)
    assert isinstance(fit_model('rf_regression', penguins, config), RandomForestRegressionModel)
    with pytest.raises(ValueError):
        fit_model('svm', penguins, config)


def test_fit_with_missing_column_raises(penguins):
    with pytest.raises(KeyError):
        fit_linear_model(penguins, 'body_mass_g', ['wing_span'])


def test_function_model_classification_requires_classes():
    with pytest.raises(ValueError):
        FunctionModel(lambda v: 'a', ['x'], task='classification')


def test_save_and_load_round_trip(tmp_path, rf_classifier, penguins):
    path = save_model(rf_classifier, tmp_path / 'models' / 'rf.joblib')
    loaded = load_model(path)

    assert loaded.required_variables == rf_classifier.required_variables
    features = rf_classifier.feature_frame(penguins)
    np.testing.assert_array_equal(
        loaded.predict_proba_frame(features), rf_classifier.predict_proba_frame(features)
    )

    artifact = joblib.load(path)
    assert artifact['kind'] == 'rf_classification'
    assert artifact['required_variables'] == list(rf_classifier.required_variables)


def test_save_and_load_linear_model(tmp_path, linear_model):
    loaded = load_model(save_model(linear_model, tmp_path / 'linear.joblib'))

    assert loaded.predict(MALE_VECTOR) == pytest.approx(linear_model.predict(MALE_VECTOR))


def test_load_missing_artifact(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_model(tmp_path / 'missing.joblib')


def test_load_rejects_foreign_artifact(tmp_path):
    path = tmp_path / 'other.joblib'
    joblib.dump({'model': [1, 2, 3]}, path)

    with pytest.raises(ValueError):
        load_model(path)


def test_save_rejects_non_model(tmp_path):
    with pytest.raises(TypeError):
        save_model(object(), tmp_path / 'x.joblib')
