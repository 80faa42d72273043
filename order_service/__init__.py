"""
Order Service — 注文ワークフロー (注文作成・在庫引き当て・キャンセル)
"""
