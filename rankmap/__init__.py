"""ローカル検索順位ヒートマップエンジン."""
