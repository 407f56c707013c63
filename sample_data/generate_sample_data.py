import numpy as np
import pandas as pd
from pathlib import Path

TISSUES = ["tumor", "stroma", "immune"]
N_FEATURES = 32


def _embedding_block(rng: np.random.Generator, size: int, shift: float) -> np.ndarray:
    base = rng.normal(0.0, 1.0, (size, N_FEATURES))
    base[:, : N_FEATURES // 4] += shift
    return base


def main() -> None:
    rng = np.random.default_rng(42)
    output_dir = Path(__file__).parent
    output_dir.mkdir(parents=True, exist_ok=True)

    for split, per_class in (("train", 60), ("test", 25)):
        blocks = []
        labels = []
        for idx, tissue in enumerate(TISSUES):
            blocks.append(_embedding_block(rng, per_class, shift=2.5 * idx))
            labels.extend([tissue] * per_class)
        features = pd.DataFrame(
            np.vstack(blocks),
            columns=[f"emb_{i + 1}" for i in range(N_FEATURES)],
        )
        order = rng.permutation(len(features))
        features = features.iloc[order].reset_index(drop=True)
        label_frame = pd.DataFrame({"tissue": np.asarray(labels)[order]})
        features.to_csv(output_dir / f"demo_{split}_features.csv", index=False)
        label_frame.to_csv(output_dir / f"demo_{split}_labels.csv", index=False)


if __name__ == "__main__":
    main()
