### --- Module Imports --- ###
# Standard Library
import json
from pathlib import Path

# Ceasefire
from ceasefire import (
    CeasefireModel,
    RunConfig,
    aggregate_daily_counts,
    assemble_config,
    compare_models,
    counterfactual_impact,
    filter_incidents,
    incidence_rate_ratios,
    load_incidents,
    marginal_trend,
    predictive_coverage,
    predictive_intervals,
    sampler_diagnostics,
    seasonal_profile,
    waic,
)
from ceasefire.utilities.logging import get_logger

### --- Global Constants Definitions --- ###
CONFIG_FILE = "ceasefire"


### --- Class and Function Definitions --- ###
def write_json(content: dict, path: Path) -> None:
    with open(path, "w") as file:
        json.dump(content, file, indent=4, default=str)


### --- Main Script --- ###
if __name__ == "__main__":
    basepath = Path(__file__).parent
    config_path = basepath / f"run_configs/{CONFIG_FILE}.toml"

    config = RunConfig.from_toml(config_path)
    data_config = config.data_config
    output_config = config.output_config
    output_dir = basepath / output_config.output_dir
    output_dir.mkdir(parents=True, exist_ok=True)

    # 1. Daily shooting counts
    incidents = load_incidents(
        basepath / data_config.data_source,
        timestamp_column=data_config.timestamp_column,
        low_memory=False,
    )
    if data_config.filter_column is not None:
        incidents = filter_incidents(
            incidents, data_config.filter_column, data_config.filter_values
        )

    model = CeasefireModel.from_toml(config_path)
    df = aggregate_daily_counts(
        incidents,
        timestamp_column=data_config.timestamp_column,
        timestamp_name=model.timestamp_name,
        metric_name=model.metric_name,
        start=data_config.start,
        end=data_config.end,
        id_column=data_config.id_column,
    )
    df.to_csv(output_dir / "daily_counts.csv", index=False)
    get_logger().info(
        f"Analysing {len(df)} days with {df[model.metric_name].sum()} "
        "shootings."
    )

    # 2. Fit
    fit_config = assemble_config("fit", model)
    model.fit(df, **fit_config)
    write_json(model.to_dict(), output_dir / "model_config.json")

    # 3. Posterior summaries
    irr = incidence_rate_ratios(model)
    irr.to_csv(output_dir / "incidence_rate_ratios.csv", index=False)

    marginal_trend(model).to_csv(
        output_dir / "marginal_trend.csv", index=False
    )
    for name in model.seasonalities:
        seasonal_profile(model, name).to_csv(
            output_dir / f"seasonal_profile_{name}.csv", index=False
        )

    predict_config = assemble_config("predict", model)
    intervals = predictive_intervals(model, **predict_config)
    intervals.to_csv(output_dir / "predictive_intervals.csv", index=False)
    coverage = predictive_coverage(model, **predict_config)

    impact = counterfactual_impact(
        model, names=output_config.counterfactual_names
    )
    write_json(impact, output_dir / "counterfactual_impact.json")

    diagnostics = sampler_diagnostics(model)
    write_json(
        {
            "waic": waic(model),
            "predictive_coverage": coverage,
            "sampler": diagnostics,
        },
        output_dir / "diagnostics.json",
    )

    # 4. Optional check of the count distribution
    if output_config.compare_distributions:
        alternative = (
            "poisson" if model.model != "poisson" else "negative binomial"
        )
        model_alt = CeasefireModel.from_toml(config_path, model=alternative)
        model_alt.fit(df, **fit_config)
        comparison = compare_models(
            {model.model: model, model_alt.model: model_alt}
        )
        comparison.to_csv(output_dir / "model_comparison.csv", index=False)
        get_logger().info(
            f"Preferred count distribution by WAIC: "
            f"'{comparison.loc[0, 'model']}'."
        )

    names = output_config.counterfactual_names
    ceasefire_irr = irr.loc[irr["name"].isin(names)]
    for _, row in ceasefire_irr.iterrows():
        get_logger().info(
            f"IRR of '{row['name']}': {row['irr_mean']:.3f} "
            f"[{row['irr_lower']:.3f}, {row['irr_upper']:.3f}], "
            f"P(decrease) = {row['prob_decrease']:.2f}"
        )
    get_logger().info(
        f"Shootings averted during ceasefires: {impact['averted_mean']:.1f} "
        f"[{impact['averted_lower']:.1f}, {impact['averted_upper']:.1f}]"
    )
