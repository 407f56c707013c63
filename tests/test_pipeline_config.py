from pathlib import Path

from pipeline_config import DEFAULT_KNN_CANDIDATES, PipelineConfig


def test_defaults():
    config = PipelineConfig()
    assert config.random_state == 42
    assert config.cv_folds == 10
    assert config.split_seed == 123
    assert config.train_fraction == 0.7
    assert config.knn_candidates == DEFAULT_KNN_CANDIDATES
    assert len(config.logistic_c_grid) == 10


def test_from_env(monkeypatch, tmp_path: Path):
    monkeypatch.setenv("HISTOLEARN_RANDOM_STATE", "7")
    monkeypatch.setenv("HISTOLEARN_CV_FOLDS", "5")
    monkeypatch.setenv("HISTOLEARN_TRAIN_FRACTION", "0.8")
    monkeypatch.setenv("HISTOLEARN_SPLIT_SEED", "not-a-number")
    monkeypatch.setenv("HISTOLEARN_LOG_DIR", str(tmp_path))

    config = PipelineConfig.from_env()
    assert config.random_state == 7
    assert config.cv_folds == 5
    assert config.train_fraction == 0.8
    assert config.split_seed == 123
    assert config.log_dir == tmp_path


def test_with_overrides_ignores_none():
    config = PipelineConfig().with_overrides(cv_folds=3, random_state=None)
    assert config.cv_folds == 3
    assert config.random_state == 42
    assert config.to_dict()["cv_folds"] == 3
