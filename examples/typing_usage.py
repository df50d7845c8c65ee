"""
Train a keyword-typing classifier and use it for predictions.
"""

import asyncio

from semantic_categorizer import (
    CategorizerConfig,
    ClassifierPredictor,
    ClassifierTrainer,
    DatabaseManager,
    LabeledSample,
    ModelStore,
    evaluate_model,
)
from semantic_categorizer.jobs import build_fetcher

SAMPLES = [
    ("Brand", "nike"),
    ("Brand", "adidas"),
    ("Brand", "new balance"),
    ("Product", "running shoes"),
    ("Product", "hiking boots"),
    ("Product", "sandals"),
    ("Question", "how to clean suede shoes"),
    ("Question", "what size running shoe do i need"),
]


async def main():
    print("🧠 Keyword Typing Example")
    print("=" * 30)

    config = CategorizerConfig(
        database_url="sqlite:///example_cache.db",
        training_epochs=300,
        training_seed=42,
    )
    db_manager = DatabaseManager(config)
    db_manager.create_tables()

    fetcher = build_fetcher(config, db_manager)
    store = ModelStore(db_manager)
    trainer = ClassifierTrainer.from_config(config, fetcher, model_store=store)
    predictor = ClassifierPredictor(fetcher, model_store=store)

    samples = [
        LabeledSample(id=i, text=text, label=label)
        for i, (label, text) in enumerate(SAMPLES, start=1)
    ]

    print(f"\n1. Training on {len(samples)} samples (project 1)...")
    outcome = await trainer.train_or_reuse(1, samples)
    if outcome.reused:
        print("✅ Stored model reused: no provider calls, no epochs")
    else:
        print(f"✅ Trained for {outcome.epochs_run} epochs, fetched {outcome.fetched} embeddings")
    print(f"   Labels: {outcome.model.labels}")

    print("\n2. Evaluating on the training samples...")
    embeddings = await fetcher.fetch([s.text for s in samples], cache_only=True)
    report = evaluate_model(outcome.model, samples, embeddings.vectors)
    print(f"   Accuracy: {report.accuracy:.2%} ({report.correct}/{report.evaluated})")

    print("\n3. Predicting new keywords...")
    for text in ["puma", "leather loafers", "are crocs good for walking"]:
        prediction = await predictor.predict(text, outcome.model)
        print(
            f"   {text!r}: {prediction.label} "
            f"(p={prediction.score:.2f}, {prediction.embedding_source.value})"
        )

    db_manager.close()


if __name__ == "__main__":
    asyncio.run(main())
