# Services layer: provider registry and courier aggregation
