"""
数据流分层架构
  Layer 1 – Acquisition  : 数据获取（CoinGecko）
  Layer 2 – Cache        : 持久缓存（Redis → MongoDB → 文件）
  Layer 3 – Processing   : 对齐 / 归一化 / 日 K 聚合
  Layer 4 – Analysis     : 示意性技术指标
  Viewport               : 日 K 可视窗口的索引计算
"""
