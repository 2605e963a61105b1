import numpy as np


def random_psd(d, rng, ridge=1.0):
    """Random well-conditioned PSD matrix W Wᵀ / d + ridge·I."""
    W = rng.standard_normal((d, d))
    return W @ W.T / d + ridge * np.eye(d)


def simulate_separable(n, R, C, seed=0):
    """n rows of vec(X) ~ N(0, I + R⊗C), X flattened row-major."""
    rng = np.random.default_rng(seed)
    p, q = R.shape[0], C.shape[0]
    L = np.kron(np.linalg.cholesky(R), np.linalg.cholesky(C))
    signal = rng.standard_normal((n, p * q)) @ L.T
    return signal + rng.standard_normal((n, p * q))


def simulate_mixture(n, factor_pairs, weights, seed=0):
    """
    n rows from a mixture of separable components plus a null N(0, I).

    ``weights`` has ``len(factor_pairs) + 1`` entries, the null last. Returns
    (Y, labels) with label ``len(factor_pairs)`` for null rows.
    """
    rng = np.random.default_rng(seed)
    K = len(factor_pairs)
    p, q = factor_pairs[0][0].shape[0], factor_pairs[0][1].shape[0]
    labels = rng.choice(K + 1, size=n, p=np.asarray(weights, dtype=float))
    Y = rng.standard_normal((n, p * q))
    for k, (R, C) in enumerate(factor_pairs):
        idx = np.flatnonzero(labels == k)
        L = np.kron(np.linalg.cholesky(R), np.linalg.cholesky(C))
        Y[idx] += rng.standard_normal((idx.size, p * q)) @ L.T
    return Y, labels
